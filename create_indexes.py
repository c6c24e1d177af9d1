"""
Create the MongoDB indexes declared on the models.
Run once per environment: python create_indexes.py
"""
import sys
import time

from app import create_app
from config import load_config, require_mongo_uri, MissingConfigError
from models import db, ALL_MODELS

config = load_config()
try:
    require_mongo_uri(config)
except MissingConfigError as e:
    print(f"❌ {e}")
    sys.exit(1)

app = create_app(config)

with app.app_context():
    print(f"Creating MongoDB indexes on {db.name}...")
    start = time.time()
    db.create_all()

    # Lookups used by the dashboard and list filters
    db._db['set'].create_index([('customer', 1)])
    db._db['sale'].create_index([('branch', 1), ('paymentMethod', 1)])
    db._db['bookcatalog'].create_index([('publication', 1)])

    for model_cls in ALL_MODELS:
        names = sorted(db._db[model_cls.collection_name()].index_information())
        print(f"  {model_cls.collection_name()}: {', '.join(names)}")
    print(f"✅ Indexes created in {time.time() - start:.2f}s")
