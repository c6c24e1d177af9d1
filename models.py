import re
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List
from urllib.parse import urlsplit, urlunsplit

from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from errors import AppError, ValidationError
# Import secure bcrypt-based password hashing
from password_security import hash_password, verify_password

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_branch_uri(base_uri: str, branch_db_name: str) -> str:
    """
    Rewrite the database (path) component of a Mongo URI.

    Scheme, credentials, hosts and query string are kept. URIs that do not
    parse as a URL (e.g. "localhost:27017/main") are rewritten by replacing
    whatever follows the last '/'.
    """
    try:
        parts = urlsplit(base_uri)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f'not a URL: {base_uri!r}')
        return urlunsplit((parts.scheme, parts.netloc, f'/{branch_db_name}', parts.query, parts.fragment))
    except ValueError:
        logger.warning("[Branch DB] Failed to parse MONGO_URI as URL, falling back to string manipulation.")
        if '/' in base_uri:
            return base_uri[:base_uri.rfind('/') + 1] + branch_db_name
        return f'{base_uri}/{branch_db_name}'


def database_name_from_uri(uri: str, default: str) -> str:
    try:
        parts = urlsplit(uri or '')
    except ValueError:
        return default
    if not parts.scheme or not parts.netloc:
        return default
    name = parts.path.lstrip('/')
    return name or default


class _DB:
    def __init__(self):
        self.client = None
        self._db = None
        self.base_uri = None

    def init_app(self, app, client=None):
        uri = app.config.get('MONGO_URI') or 'mongodb://localhost:27017'
        dbname = database_name_from_uri(uri, app.config.get('MONGO_DBNAME', 'bookstore_main_admin'))
        self.base_uri = uri
        # Client is lazy: the first command opens the connection
        self.client = client if client is not None else MongoClient(uri, serverSelectionTimeoutMS=8000)
        self._db = self.client[dbname]
        app.extensions['mongo'] = self
        logger.info(f"[Mongo] Central database configured (DB: {dbname})")

    @property
    def name(self):
        return self._db.name if self._db is not None else None

    def ping(self):
        return self._db.command('ping')

    def create_all(self):
        """Create the unique and lookup indexes every model declares."""
        if self._db is None:
            return
        try:
            for model_cls in ALL_MODELS:
                coll = self._db[model_cls.collection_name()]
                coll.create_index('id', unique=True)
                for spec in model_cls.unique_indexes:
                    keys = [(field, ASCENDING) for field in spec]
                    coll.create_index(keys, unique=True)
                for field in model_cls.lookup_indexes:
                    coll.create_index([(field, ASCENDING)])
            logger.info("[Mongo] Indexes created successfully.")
        except PyMongoError as e:
            logger.error(f"[Mongo] Index creation failed: {e}")

    def get_branch_db(self, branch_db_name):
        """
        Open a new connection to a branch's own database.
        Returns None (and logs) for an invalid name or an unusable URI.
        """
        if not branch_db_name or not isinstance(branch_db_name, str):
            logger.error("[Branch DB] Invalid branch database name provided.")
            return None

        branch_uri = build_branch_uri(self.base_uri or 'mongodb://localhost:27017', branch_db_name)
        try:
            branch_client = MongoClient(branch_uri, serverSelectionTimeoutMS=8000)
        except PyMongoError as e:
            logger.error(f"[Branch DB] Connection error for {branch_db_name}: {e}")
            return None
        logger.info(f"[Branch DB] Connected: {branch_db_name}")
        return branch_client[branch_db_name]


db = _DB()


def get_next_id(mongo_db, name: str) -> int:
    counters = mongo_db['__counters__']
    res = counters.find_one_and_update(
        {'_id': name},
        {'$inc': {'seq': 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(res['seq'])


class ColumnRef:
    def __init__(self, name: str, descending: bool = False):
        self.name = name
        self.descending = descending

    def desc(self):
        return ColumnRef(self.name, descending=True)

    def __str__(self):
        return self.name


class ModelMeta(type):
    def __getattr__(cls, item):
        # - `Model.query` returns a fresh Query(model)
        # - other unknown attributes are column references for order_by()
        if item.startswith('__'):
            raise AttributeError(item)
        if item == 'query':
            return Query(cls)
        return ColumnRef(item)


class Query:
    def __init__(self, model_cls):
        self.model_cls = model_cls
        self._filter = {}
        self._sort = None
        self._projection = None
        self._skip = 0
        self._limit = 0

    def _collection(self):
        return self.model_cls.collection()

    def filter_by(self, **kwargs):
        self._filter.update(kwargs)
        return self

    def find(self, filter_doc):
        self._filter.update(filter_doc or {})
        return self

    @property
    def filter_doc(self):
        return dict(self._filter)

    def options(self, projection):
        """
        Specify fields to include/exclude.
        Usage: Model.query.options({'field1': 1, 'field2': 1})
        """
        self._projection = projection
        return self

    def order_by(self, *attrs):
        # order_by(Model.field, Model.other.desc()) or order_by('field', '-other')
        sorts = []
        for attr in attrs:
            if isinstance(attr, ColumnRef):
                sorts.append((attr.name, DESCENDING if attr.descending else ASCENDING))
            elif isinstance(attr, (tuple, list)):
                sorts.append((attr[0], attr[1]))
            else:
                name = str(attr)
                if name.startswith('-'):
                    sorts.append((name[1:], DESCENDING))
                else:
                    sorts.append((name, ASCENDING))
        self._sort = sorts if sorts else None
        return self

    def skip(self, count):
        self._skip = max(int(count), 0)
        return self

    def limit(self, count):
        self._limit = max(int(count), 0)
        return self

    def _cursor(self):
        cursor = self._collection().find(self._filter, self._projection)
        if self._sort:
            cursor = cursor.sort(self._sort)
        if self._skip:
            cursor = cursor.skip(self._skip)
        if self._limit:
            cursor = cursor.limit(self._limit)
        return cursor

    def all(self):
        partial = self._projection is not None
        return [self.model_cls.from_document(doc, partial) for doc in self._cursor()]

    def first(self):
        self._limit = 1
        docs = list(self._cursor())
        if not docs:
            return None
        return self.model_cls.from_document(docs[0], self._projection is not None)

    def count(self):
        return self._collection().count_documents(self._filter)

    def delete(self):
        return self._collection().delete_many(self._filter)

    def get(self, id_value):
        try:
            id_value = int(id_value)
        except (TypeError, ValueError):
            return None
        doc = self._collection().find_one({'id': id_value})
        if not doc:
            return None
        return self.model_cls.from_document(doc)

    def get_or_404(self, id_value, message=None):
        obj = self.get(id_value)
        if obj is None:
            label = self.model_cls.label
            raise AppError(message or f'No {label} found with that ID', 404)
        return obj


# --- Field validation helpers ---

MOBILE_10_RE = re.compile(r'^\d{10}$')
MOBILE_10_15_RE = re.compile(r'^\d{10,15}$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
GSTIN_RE = re.compile(r'^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$')

STATUS_CHOICES = ('active', 'inactive')


def _blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _matches(pattern, value):
    return isinstance(value, str) and pattern.match(value) is not None


def _as_number(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BaseModel(metaclass=ModelMeta):
    __collection__ = None
    label = 'document'
    # field -> default value applied when missing
    fields: Dict[str, Any] = {}
    required_fields: Dict[str, str] = {}
    numeric_fields = ()
    boolean_fields = ()
    hidden_fields = ('password_hash',)
    unique_indexes: List[tuple] = []
    lookup_indexes = ()

    def __init__(self, **kwargs):
        for k, v in kwargs.items():
            setattr(self, k, v)
        for k, default in self.fields.items():
            if not hasattr(self, k):
                setattr(self, k, default() if callable(default) else default)

    @classmethod
    def collection_name(cls):
        return cls.__collection__ or cls.__name__.lower()

    @classmethod
    def collection(cls):
        return db._db[cls.collection_name()]

    @classmethod
    def from_document(cls, doc, partial=False):
        obj = cls.__new__(cls)
        for k, v in doc.items():
            setattr(obj, k, v)
        if partial:
            return obj
        # Older documents may predate a field
        for k, default in cls.fields.items():
            if k not in doc:
                setattr(obj, k, default() if callable(default) else default)
        return obj

    @classmethod
    def create(cls, **data):
        obj = cls(**data)
        obj.save()
        return obj

    def to_dict(self) -> Dict[str, Any]:
        d = self.__dict__.copy()
        # Convert MongoDB ObjectId to string for JSON serialization
        if '_id' in d and d['_id'] is not None:
            d['_id'] = str(d['_id'])
        return d

    def to_public(self) -> Dict[str, Any]:
        d = self.to_dict()
        for field in self.hidden_fields:
            d.pop(field, None)
        return d

    def update(self, **changes):
        for k, v in changes.items():
            setattr(self, k, v)
        return self

    def clean(self):
        """Normalise field values before validation (trim, case)."""
        for k, v in list(self.__dict__.items()):
            if isinstance(v, str) and k not in self.hidden_fields:
                setattr(self, k, v.strip())
        # References and amounts arrive as strings from form posts
        for field in self.numeric_fields:
            value = getattr(self, field, None)
            if isinstance(value, str) and value:
                number = _as_number(value)
                if number is not None:
                    setattr(self, field, int(number) if float(number).is_integer() else number)

    def validate(self) -> List[str]:
        errors = []
        for field, message in self.required_fields.items():
            if _blank(getattr(self, field, None)):
                errors.append(message)
        status = getattr(self, 'status', None)
        if 'status' in self.fields and status not in self.status_choices():
            errors.append(f'`{status}` is not a valid status')
        return errors

    def status_choices(self):
        return STATUS_CHOICES

    def _save(self, mongo_db):
        coll = mongo_db[self.collection_name()]
        now = _utcnow()
        if getattr(self, 'createdAt', None) is None:
            self.createdAt = now
        self.updatedAt = now
        # ensure integer id sequence
        if getattr(self, 'id', None) is None:
            self.id = get_next_id(mongo_db, self.collection_name())
        data = self.to_dict()
        # _id is immutable once the document exists
        data.pop('_id', None)
        coll.replace_one({'id': self.id}, data, upsert=True)

    def save(self):
        """
        Validate and save the current instance to the central database.
        """
        self.clean()
        errors = self.validate()
        if errors:
            raise ValidationError(errors)
        self._save(db._db)
        return self

    def delete(self):
        return self.collection().delete_one({'id': self.id})

    def __repr__(self):
        return f'<{self.__class__.__name__} {getattr(self, "id", None)}>'


class PasswordMixin:
    def set_password(self, password):
        """Hash and store the password with bcrypt."""
        self.password_hash = hash_password(password)

    def check_password(self, password):
        stored_hash = getattr(self, 'password_hash', '')
        if not stored_hash:
            return False
        return verify_password(password, stored_hash)


# --- Users ---


class SuperAdmin(PasswordMixin, BaseModel):
    label = 'super admin'
    fields = {'role': 'super_admin', 'status': 'active'}
    required_fields = {
        'name': 'A Super Admin must have a name',
        'username': 'A Super Admin must have a username',
        'email': 'A Super Admin must have an email',
        'password_hash': 'A password is required',
    }
    unique_indexes = [('username',), ('email',)]

    def clean(self):
        super().clean()
        for field in ('username', 'email'):
            value = getattr(self, field, None)
            if isinstance(value, str):
                setattr(self, field, value.lower())

    def validate(self):
        errors = super().validate()
        email = getattr(self, 'email', None)
        if email and not _matches(EMAIL_RE, email):
            errors.append('Please provide a valid email')
        return errors

    def __repr__(self):
        return f'<SuperAdmin {getattr(self, "username", None)}>'


class BranchAdmin(PasswordMixin, BaseModel):
    label = 'admin'
    fields = {'role': 'branch_admin', 'status': 'active'}
    required_fields = {
        'name': 'Please enter name',
        'email': 'Please enter email',
        'password_hash': 'Please enter password',
        'employeeId': 'Employee ID is required',
        'branchId': 'Branch ID is required',
    }
    unique_indexes = [('email',), ('employeeId',)]

    def clean(self):
        super().clean()
        if isinstance(getattr(self, 'email', None), str):
            self.email = self.email.lower()


class Employee(PasswordMixin, BaseModel):
    label = 'employee'
    ROLES = ('employee', 'cashier', 'manager', 'sales')
    fields = {'role': 'employee', 'status': 'active', 'mobileNumber': None}
    required_fields = {
        'name': 'Please enter your name',
        'email': 'Please enter your email',
        'password_hash': 'Please enter your password',
        'branchId': 'Please select the branch to which this employee belongs',
    }
    unique_indexes = [('email',)]
    lookup_indexes = ('branchId',)

    def clean(self):
        super().clean()
        if isinstance(getattr(self, 'email', None), str):
            self.email = self.email.lower()

    def validate(self):
        errors = super().validate()
        if self.role not in self.ROLES:
            errors.append(f'`{self.role}` is not a valid employee role')
        email = getattr(self, 'email', None)
        if email and not _matches(EMAIL_RE, email):
            errors.append('Please enter a valid email address')
        return errors


class StockManager(PasswordMixin, BaseModel):
    label = 'stock manager'
    fields = {'role': 'stock_manager'}
    required_fields = {
        'name': 'Name is required',
        'email': 'Email is required',
        'phone': 'Phone is required',
        'password_hash': 'Password is required',
        'address': 'Address is required',
    }
    unique_indexes = [('email',), ('phone',)]

    def clean(self):
        super().clean()
        if isinstance(getattr(self, 'email', None), str):
            self.email = self.email.lower()

    def validate(self):
        errors = super().validate()
        email = getattr(self, 'email', None)
        if email and not _matches(EMAIL_RE, email):
            errors.append('Please fill a valid email address')
        return errors


USER_MODELS = (SuperAdmin, BranchAdmin, Employee, StockManager)


# --- Tenancy ---


class Branch(BaseModel):
    """A retail outlet; may own a separate database named by `dbName`."""
    label = 'branch'
    fields = {
        'shopGstId': None,
        'mobileNumber': None,
        'logoImage': 'no-photo.jpg',
        'status': 'active',
        'dbName': None,
    }
    required_fields = {
        'name': 'Please enter branch name',
        'location': 'Please enter branch location',
        'shopOwnerName': 'Please enter shop owner name',
        'address': 'Please enter full address',
        'createdBy': 'Information of the admin creating the branch is required',
    }
    unique_indexes = [('name',)]

    def clean(self):
        super().clean()
        if isinstance(self.shopGstId, str):
            self.shopGstId = self.shopGstId.upper() or None

    def validate(self):
        errors = super().validate()
        if not _blank(self.mobileNumber) and not MOBILE_10_RE.match(str(self.mobileNumber)):
            errors.append('Please enter a valid 10-digit mobile number')
        return errors

    def database_name(self):
        if getattr(self, 'dbName', None):
            return self.dbName
        slug = re.sub(r'[^a-z0-9]+', '_', str(getattr(self, 'name', '')).lower()).strip('_')
        return f'bookstore_{slug}' if slug else None

    def database(self):
        return db.get_branch_db(self.database_name())

    def __repr__(self):
        return f'<Branch {getattr(self, "name", None)} ({getattr(self, "location", "")})>'


# --- Catalog lookups ---


class NamedLookup(BaseModel):
    """Name + status records (classes, zones, languages)."""
    fields = {'status': 'active'}
    max_name_length = 50
    unique_indexes = [('name',)]

    def validate(self):
        errors = super().validate()
        name = getattr(self, 'name', None)
        if isinstance(name, str) and len(name) > self.max_name_length:
            errors.append(f'{self.label.capitalize()} name cannot be more than {self.max_name_length} characters')
        return errors


class SchoolClass(NamedLookup):
    __collection__ = 'class'
    label = 'class'
    required_fields = {'name': 'Class name is required'}


class Zone(NamedLookup):
    label = 'zone'
    required_fields = {'name': 'Zone name is required'}


class Language(NamedLookup):
    label = 'language'
    required_fields = {'name': 'Language name is required'}


class City(NamedLookup):
    label = 'city'
    fields = {'status': 'active', 'assignedSalesRepresentative': None}
    required_fields = {
        'name': 'City name is required',
        'zone': 'City must belong to a Zone',
    }
    numeric_fields = ('zone', 'assignedSalesRepresentative')
    unique_indexes = []
    lookup_indexes = ('zone',)


class Publication(BaseModel):
    label = 'publication'
    fields = {
        'bank': '',
        'accountNumber': '',
        'ifsc': '',
        'gstin': '',
        'discount': 0,
        'status': 'active',
    }
    required_fields = {
        'name': 'Publication name is required',
        'personName': 'Person name is required',
        'city': 'City is required',
        'mobileNumber': 'Mobile number is required',
        'address': 'Address is required',
    }
    numeric_fields = ('city', 'discount')
    unique_indexes = [('name',)]

    def clean(self):
        super().clean()
        if isinstance(self.gstin, str):
            self.gstin = self.gstin.upper()

    def validate(self):
        errors = super().validate()
        mobile = getattr(self, 'mobileNumber', None)
        if not _blank(mobile) and not MOBILE_10_15_RE.match(str(mobile)):
            errors.append(f'{mobile} is not a valid mobile number! (10-15 digits)')
        if self.gstin and not _matches(GSTIN_RE, self.gstin):
            errors.append(f'{self.gstin} is not a valid GSTIN format!')
        discount = _as_number(self.discount)
        if discount is None or discount < 0 or discount > 100:
            errors.append('Discount must be between 0 and 100')
        return errors


class PublicationSubtitle(BaseModel):
    label = 'subtitle'
    required_fields = {
        'name': 'Subtitle name is required',
        'publication': 'Subtitle must belong to a Publication',
    }
    numeric_fields = ('publication',)
    unique_indexes = [('name', 'publication')]


class BookCatalog(BaseModel):
    label = 'book catalog'
    BOOK_TYPES = ('default', 'common_price')
    fields = {
        'subtitle': None,
        'language': None,
        'bookType': 'default',
        'commonPrice': None,
        'commonIsbn': None,
        'pricesByClass': None,
        'isbnByClass': None,
        'gstPercentage': 0,
        'status': 'active',
    }
    required_fields = {
        'bookName': 'Book name is required',
        'publication': 'Publication is required',
        'bookType': 'Book type is required',
    }
    numeric_fields = ('publication', 'subtitle', 'language', 'commonPrice', 'gstPercentage')
    unique_indexes = [('bookName', 'publication', 'subtitle')]

    def validate(self):
        errors = super().validate()
        name = getattr(self, 'bookName', None)
        if isinstance(name, str) and len(name) > 200:
            errors.append('Book name cannot exceed 200 characters')
        if self.bookType not in self.BOOK_TYPES:
            errors.append(f'`{self.bookType}` is not a valid book type')
        if self.bookType == 'common_price':
            price = _as_number(self.commonPrice)
            if price is None or price < 0:
                errors.append('Common Price must be a non-negative number.')
        gst = _as_number(self.gstPercentage)
        if gst is None or gst < 0 or gst > 100:
            errors.append('GST percentage must be between 0 and 100')
        return errors


class StationeryItem(BaseModel):
    label = 'stationery item'
    fields = {
        'price': 0,
        'marginPercentage': 0,
        'customerDiscountPercentage': 0,
        'companyDiscountPercentage': 0,
        'status': 'active',
    }
    required_fields = {
        'itemName': 'Stationery item name is required',
        'category': 'Category is required',
    }
    numeric_fields = ('price', 'marginPercentage', 'customerDiscountPercentage', 'companyDiscountPercentage')
    unique_indexes = [('itemName',)]

    def validate(self):
        errors = super().validate()
        price = _as_number(self.price)
        margin = _as_number(self.marginPercentage)
        if price is None or price < 0:
            errors.append('Price cannot be negative')
        if margin is None or margin < 0 or margin > 100:
            errors.append('Margin Percentage must be between 0 and 100')
        for field in ('customerDiscountPercentage', 'companyDiscountPercentage'):
            value = _as_number(getattr(self, field))
            if value is None or value < 0:
                errors.append(f'{field} cannot be negative')
        return errors


class Customer(BaseModel):
    label = 'customer'
    fields = {
        'schoolCode': None,
        'branch': None,
        'contactPerson': None,
        'mobileNumber': None,
        'email': None,
        'gstNumber': None,
        'aadharNumber': None,
        'panNumber': None,
        'shopAddress': None,
        'homeAddress': None,
        'customerType': None,
        'image': 'https://placehold.co/200x200/cccccc/ffffff?text=No+Image',
        'status': 'active',
    }
    required_fields = {
        'customerName': 'Customer name is required',
        'city': 'City is required',
    }
    numeric_fields = ('branch', 'city', 'discount', 'openingBalance')
    unique_indexes = [('customerName',)]
    lookup_indexes = ('branch', 'mobileNumber', 'email')

    # field -> (exact length, message)
    FIXED_LENGTHS = {
        'gstNumber': (15, 'GST number must be 15 characters if specified'),
        'aadharNumber': (12, 'Aadhar number must be 12 digits if specified'),
        'panNumber': (10, 'PAN number must be 10 characters if specified'),
    }

    def clean(self):
        super().clean()
        for field in ('schoolCode', 'gstNumber', 'panNumber'):
            value = getattr(self, field, None)
            if isinstance(value, str):
                setattr(self, field, value.upper())
        if isinstance(self.email, str):
            self.email = self.email.lower()

    def validate(self):
        errors = super().validate()
        name = getattr(self, 'customerName', None)
        if isinstance(name, str) and len(name) > 100:
            errors.append('Customer name cannot exceed 100 characters')
        if not _blank(self.mobileNumber) and not MOBILE_10_RE.match(str(self.mobileNumber)):
            errors.append('Please provide a valid 10-digit Indian mobile number if specified')
        if not _blank(self.email) and not _matches(EMAIL_RE, self.email):
            errors.append('Please provide a valid email if specified')
        for field, (length, message) in self.FIXED_LENGTHS.items():
            value = getattr(self, field)
            if not _blank(value) and len(str(value)) != length:
                errors.append(message)
        return errors


class Transport(BaseModel):
    label = 'transport'
    required_fields = {'name': 'Transport name is required'}
    unique_indexes = [('name',)]


# --- Orders and sales ---


ITEM_STATUSES = ('active', 'pending', 'clear')


class Set(BaseModel):
    """Books and stationery a customer (school) orders for one class."""
    label = 'set'
    fields = {
        'books': list,
        'stationeryItems': list,
        'quantity': 0,
        'totalPrice': 0,
    }
    required_fields = {
        'customer': 'A set must belong to a customer',
        'class': 'A set must be associated with a class',
    }
    numeric_fields = ('customer', 'class', 'quantity', 'totalPrice')
    unique_indexes = [('customer', 'class')]

    @staticmethod
    def _lines(value):
        """Dict lines of a books/stationeryItems list; anything else is skipped."""
        if not isinstance(value, list):
            return []
        return [line for line in value if isinstance(line, dict)]

    def _check_lines(self, field, ref_field, label, errors):
        lines = getattr(self, field, None)
        if not isinstance(lines, list) or len(self._lines(lines)) != len(lines):
            errors.append(f'{label} lines must be a list of objects')
        for line in self._lines(lines):
            if _blank(line.get(ref_field)):
                errors.append(f'{label} ID is required')
            quantity = _as_number(line.get('quantity'))
            if quantity is None or quantity < 1:
                errors.append('Quantity must be at least 1')
            price = _as_number(line.get('price'))
            if price is None or price < 0:
                errors.append('Price cannot be negative')
            if line.get('status', 'active') not in ITEM_STATUSES:
                errors.append(f"`{line.get('status')}` is not a valid item status")

    def clean(self):
        super().clean()
        for line in self._lines(self.books) + self._lines(self.stationeryItems):
            line.setdefault('status', 'active')
        self.totalPrice = self.compute_total()

    def compute_total(self):
        total = 0
        for line in self._lines(self.books) + self._lines(self.stationeryItems):
            quantity = _as_number(line.get('quantity')) or 0
            price = _as_number(line.get('price')) or 0
            total += quantity * price
        return total

    def validate(self):
        errors = super().validate()
        self._check_lines('books', 'book', 'Book', errors)
        self._check_lines('stationeryItems', 'item', 'Stationery item', errors)
        return errors


class Sale(BaseModel):
    label = 'sale'
    PAYMENT_METHODS = ('cash', 'upi', 'card', 'other')
    fields = {'items': list, 'customer': None}
    required_fields = {
        'billNo': 'Bill number is required',
        'branch': 'Sale must belong to a branch',
        'paymentMethod': 'Payment method is required',
    }
    numeric_fields = ('branch', 'totalAmount', 'customer')
    unique_indexes = [('billNo',)]
    lookup_indexes = ('branch',)

    def clean(self):
        super().clean()
        bill_no = getattr(self, 'billNo', None)
        self.billNo = str(bill_no) if bill_no is not None else None
        for item in self.items:
            item['totalPrice'] = (_as_number(item.get('quantity')) or 0) * (_as_number(item.get('price')) or 0)

    def validate(self):
        errors = super().validate()
        if _as_number(getattr(self, 'totalAmount', None)) is None:
            errors.append('Total amount is required')
        method = getattr(self, 'paymentMethod', None)
        if method and method not in self.PAYMENT_METHODS:
            errors.append(f"`{method}` is not a valid payment method")
        return errors


ALL_MODELS = (
    SuperAdmin, BranchAdmin, Employee, StockManager, Branch,
    SchoolClass, Zone, Language, City, Publication, PublicationSubtitle,
    BookCatalog, StationeryItem, Customer, Transport, Set, Sale,
)
