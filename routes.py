"""
JSON API mounted under /api/v1.
"""
import logging
from datetime import datetime, timezone

from flask import Blueprint, request, jsonify, g

from api_features import APIFeatures
from auth_jwt import (
    protect, restrict_to, send_token, clear_token_cookie, decode_token,
    revoke_token, get_request_token, find_user_by_identifier, public_user,
)
from cache import cache_response, invalidate_cache
from errors import AppError
from models import (
    SuperAdmin, BranchAdmin, Employee, StockManager, Branch,
    SchoolClass, Zone, Language, City, Publication, PublicationSubtitle,
    BookCatalog, StationeryItem, Customer, Transport, Set, Sale,
    ITEM_STATUSES,
)
from password_security import needs_rehash

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api/v1')

CATALOG_ROLES = ('super_admin', 'branch_admin', 'stock_manager')
BRANCH_READ_ROLES = ('super_admin', 'branch_admin', 'employee')


# --- Helpers ---

def _body():
    return request.get_json(silent=True) or {}


def _pick(data, fields):
    return {k: data[k] for k in fields if k in data}


def _to_int(value, message):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AppError(message, 400)


def _check_text(data, *fields):
    """Reject non-string values for fields that are matched as text."""
    for field in fields:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            raise AppError(f'{field} must be a string', 400)
    return data


def _success(data, status_code=200, **extra):
    payload = {'status': 'success'}
    payload.update(extra)
    payload['data'] = data
    return jsonify(payload), status_code


def _no_content():
    return '', 204


def _public_list(objs):
    return [obj.to_public() for obj in objs]


def _summary_prefix(entity):
    return f'summary:{entity}'


def _embed(doc, field, model_cls, *fields):
    """Replace an integer reference with a small dict of the referenced document."""
    ref = doc.get(field)
    if ref is None:
        return doc
    target = model_cls.query.get(ref)
    if target is not None:
        doc[field] = {'id': target.id, **{f: getattr(target, f, None) for f in fields}}
    return doc


# --- Auth ---

@api.route('/auth/login', methods=['POST'])
def login():
    data = _check_text(_body(), 'identifier', 'email', 'username', 'password')
    identifier = data.get('identifier') or data.get('email') or data.get('username')
    password = data.get('password')
    if not identifier or not password:
        raise AppError('Please provide email/username and password!', 400)

    user = find_user_by_identifier(identifier)
    if user is None or not user.check_password(password):
        logger.info(f"[Auth] Failed login for {identifier}")
        raise AppError('Incorrect credentials (email/username or password)', 401)

    # Upgrade hashes created with an older work factor
    if needs_rehash(user.password_hash):
        user.set_password(password)
        user.save()

    logger.info(f"[Auth] {user.role} {user.id} logged in")
    return send_token(user, 200)


@api.route('/auth/register-super-admin', methods=['POST'])
def register_super_admin():
    data = _check_text(_body(), 'name', 'username', 'email', 'password')
    name, username = data.get('name'), data.get('username')
    email, password = data.get('email'), data.get('password')
    if not all([name, username, email, password]):
        raise AppError('Please provide name, username, email, and password.', 400)

    existing = SuperAdmin.query.find({'$or': [
        {'username': username.strip().lower()},
        {'email': email.strip().lower()},
    ]}).first()
    if existing:
        raise AppError('A Super Admin with this username or email already exists.', 409)

    admin = SuperAdmin(name=name, username=username, email=email)
    admin.set_password(password)
    admin.save()
    return send_token(admin, 201)


@api.route('/auth/logout', methods=['GET', 'POST'])
def logout():
    token = get_request_token()
    if token:
        payload = decode_token(token)
        if payload:
            remaining = int(payload['exp'] - datetime.now(timezone.utc).timestamp())
            revoke_token(payload.get('jti'), remaining)

    response = jsonify({'status': 'success'})
    return clear_token_cookie(response)


def _branch_name_for(user):
    if user.role == 'super_admin':
        return 'Head Office'
    if user.role == 'branch_admin' and getattr(user, 'branchId', None) is not None:
        try:
            branch_id = int(user.branchId)
        except (TypeError, ValueError):
            logger.error(f"[Auth] Invalid branchId on user {user.id}: {user.branchId!r}")
            return 'Invalid Branch ID'
        branch = Branch.query.get(branch_id)
        if branch is None:
            logger.warning(f"[Auth] Branch {branch_id} not found for user {user.id}")
            return 'Unknown Branch'
        return branch.name
    return 'N/A'


@api.route('/auth/me', methods=['GET'])
@protect
def me():
    user = g.user
    data = public_user(user)
    data['branchId'] = getattr(user, 'branchId', None)
    data['branchName'] = _branch_name_for(user)
    return _success({'user': data})


# --- Classes, zones, languages ---

def _register_lookup_routes(url, model_cls, entity):
    endpoint = entity.replace('-', '_')

    def list_items():
        items = model_cls.query.order_by(model_cls.name).all()
        return _success(_public_list(items), results=len(items))

    def get_item(item_id):
        return _success(model_cls.query.get_or_404(item_id).to_public())

    def create_item():
        data = _body()
        if not data.get('name'):
            raise AppError(f'{model_cls.label.capitalize()} name is required', 400)
        item = model_cls.create(**_pick(data, ('name', 'status')))
        invalidate_cache(_summary_prefix(entity))
        return _success(item.to_public(), 201)

    def update_item(item_id):
        item = model_cls.query.get_or_404(item_id)
        changes = _pick(_body(), ('name', 'status'))
        if not changes:
            raise AppError('Please provide a name or status to update', 400)
        item.update(**changes).save()
        invalidate_cache(_summary_prefix(entity))
        return _success(item.to_public())

    def delete_item(item_id):
        model_cls.query.get_or_404(item_id).delete()
        invalidate_cache(_summary_prefix(entity))
        return _no_content()

    guard = lambda f: protect(restrict_to(*CATALOG_ROLES)(f))
    api.add_url_rule(url, f'list_{endpoint}', guard(list_items), methods=['GET'])
    api.add_url_rule(url, f'create_{endpoint}', guard(create_item), methods=['POST'])
    api.add_url_rule(f'{url}/<int:item_id>', f'get_{endpoint}', guard(get_item), methods=['GET'])
    api.add_url_rule(f'{url}/<int:item_id>', f'update_{endpoint}', guard(update_item), methods=['PATCH'])
    api.add_url_rule(f'{url}/<int:item_id>', f'delete_{endpoint}', guard(delete_item), methods=['DELETE'])


_register_lookup_routes('/classes', SchoolClass, 'classes')
_register_lookup_routes('/zones', Zone, 'zones')
_register_lookup_routes('/languages', Language, 'languages')


# --- Cities ---

CITY_FIELDS = ('name', 'zone', 'status', 'assignedSalesRepresentative')


def _city_doc(city):
    return _embed(city.to_public(), 'zone', Zone, 'name')


def _check_zone(zone_id):
    if zone_id is not None and Zone.query.get(zone_id) is None:
        raise AppError('No zone found with that ID', 404)


@api.route('/cities', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_cities():
    query = City.query
    if request.args.get('zone'):
        query = query.filter_by(zone=_to_int(request.args['zone'], 'Invalid Zone ID provided'))
    cities = query.order_by(City.name).all()
    return _success([_city_doc(c) for c in cities], results=len(cities))


@api.route('/cities/<int:city_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_city(city_id):
    return _success(_city_doc(City.query.get_or_404(city_id)))


@api.route('/cities', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_city():
    data = _pick(_body(), CITY_FIELDS)
    if data.get('zone') is not None:
        data['zone'] = _to_int(data['zone'], 'Invalid Zone ID provided')
    _check_zone(data.get('zone'))
    city = City.create(**data)
    invalidate_cache(_summary_prefix('cities'))
    return _success(_city_doc(city), 201)


@api.route('/cities/<int:city_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_city(city_id):
    city = City.query.get_or_404(city_id)
    changes = _pick(_body(), CITY_FIELDS)
    if not changes:
        raise AppError('No valid fields provided for update', 400)
    if changes.get('zone') is not None:
        changes['zone'] = _to_int(changes['zone'], 'Invalid Zone ID provided')
        _check_zone(changes['zone'])
    city.update(**changes).save()
    invalidate_cache(_summary_prefix('cities'))
    return _success(_city_doc(city))


@api.route('/cities/<int:city_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_city(city_id):
    City.query.get_or_404(city_id).delete()
    invalidate_cache(_summary_prefix('cities'))
    return _no_content()


# --- Publications and subtitles ---

PUBLICATION_FIELDS = ('name', 'personName', 'city', 'mobileNumber', 'bank', 'accountNumber',
                      'ifsc', 'gstin', 'discount', 'address', 'status')


def _publication_doc(publication):
    doc = _embed(publication.to_public(), 'city', City, 'name')
    subtitles = PublicationSubtitle.query.filter_by(publication=publication.id).order_by('name').all()
    doc['subtitles'] = [{'id': s.id, 'name': s.name} for s in subtitles]
    return doc


@api.route('/publications', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_publications():
    features = APIFeatures(Publication.query, request.args).filter().sort().limit_fields().paginate()
    publications = features.query.all()
    total = Publication.query.find(features.filter_query).count()
    return _success([_publication_doc(p) for p in publications],
                    results=len(publications), totalCount=total)


@api.route('/publications/<int:publication_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_publication(publication_id):
    return _success(_publication_doc(Publication.query.get_or_404(publication_id)))


@api.route('/publications', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_publication():
    data = _body()
    publication = Publication.create(**_pick(data, PUBLICATION_FIELDS))
    for name in data.get('subtitles') or []:
        if isinstance(name, str) and name.strip():
            PublicationSubtitle.create(name=name, publication=publication.id)
    invalidate_cache(_summary_prefix('publications'))
    return _success(_publication_doc(publication), 201)


@api.route('/publications/<int:publication_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_publication(publication_id):
    publication = Publication.query.get_or_404(publication_id)
    publication.update(**_pick(_body(), PUBLICATION_FIELDS)).save()
    return _success(_publication_doc(publication))


@api.route('/publications/<int:publication_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_publication(publication_id):
    publication = Publication.query.get_or_404(publication_id)
    removed = PublicationSubtitle.query.filter_by(publication=publication.id).delete()
    publication.delete()
    logger.info(f"Deleted publication {publication_id} and {removed.deleted_count} subtitles")
    invalidate_cache(_summary_prefix('publications'))
    return _no_content()


@api.route('/publications/<int:publication_id>/subtitles', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_subtitles(publication_id):
    Publication.query.get_or_404(publication_id)
    subtitles = PublicationSubtitle.query.filter_by(publication=publication_id).order_by('name').all()
    return _success(_public_list(subtitles), results=len(subtitles))


@api.route('/publications/<int:publication_id>/subtitles', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_subtitle(publication_id):
    Publication.query.get_or_404(publication_id)
    name = _body().get('name')
    if not name:
        raise AppError('Subtitle name is required', 400)
    subtitle = PublicationSubtitle.create(name=name, publication=publication_id)
    return _success(subtitle.to_public(), 201)


@api.route('/publications/<int:publication_id>/subtitles/<int:subtitle_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_subtitle(publication_id, subtitle_id):
    subtitle = PublicationSubtitle.query.filter_by(id=subtitle_id, publication=publication_id).first()
    if subtitle is None:
        raise AppError('No subtitle found with that ID', 404)
    subtitle.delete()
    return _no_content()


# --- Book catalog ---

BOOK_FIELDS = ('bookName', 'publication', 'subtitle', 'language', 'bookType', 'commonPrice',
               'commonIsbn', 'pricesByClass', 'isbnByClass', 'gstPercentage', 'status')


def _apply_book_type_rules(data):
    """Validate price/ISBN fields for the book type and clear the unused ones."""
    if data.get('bookType') == 'common_price':
        price = data.get('commonPrice')
        if not isinstance(price, (int, float)):
            try:
                price = float(price)
            except (TypeError, ValueError):
                price = None
        if isinstance(data.get('commonPrice'), bool) or price is None or price < 0:
            raise AppError('Common Price must be a non-negative number.', 400)
        data['commonPrice'] = price
        if not data.get('commonIsbn'):
            raise AppError('Common ISBN is required.', 400)
        data['pricesByClass'] = None
        data['isbnByClass'] = None
    elif data.get('bookType') == 'default':
        if not data.get('pricesByClass'):
            raise AppError('At least one class price is required.', 400)
        if not data.get('isbnByClass'):
            raise AppError('At least one class ISBN is required.', 400)
        data['commonPrice'] = None
        data['commonIsbn'] = None
    return data


def _check_duplicate_book(data, exclude_id=None):
    filter_doc = {
        'bookName': (data.get('bookName') or '').strip(),
        'publication': data.get('publication'),
        'subtitle': data.get('subtitle'),
    }
    if exclude_id is not None:
        filter_doc['id'] = {'$ne': exclude_id}
    if BookCatalog.query.find(filter_doc).first():
        raise AppError('A book with this name, publication, and subtitle already exists.', 409)


def _book_doc(book):
    doc = book.to_public()
    _embed(doc, 'publication', Publication, 'name')
    _embed(doc, 'subtitle', PublicationSubtitle, 'name')
    _embed(doc, 'language', Language, 'name')
    return doc


def _normalise_book_refs(data):
    for field, label in (('publication', 'Publication'), ('subtitle', 'Subtitle'), ('language', 'Language')):
        if data.get(field) not in (None, ''):
            data[field] = _to_int(data[field], f'Invalid {label} ID provided')
        elif field in data:
            data[field] = None
    return data


@api.route('/book-catalogs', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_book_catalog():
    data = _normalise_book_refs(_pick(_check_text(_body(), 'bookName'), BOOK_FIELDS))
    if not data.get('bookName') or not data.get('publication') or not data.get('bookType'):
        raise AppError('Book Name, Publication, and Book Type are required.', 400)
    _apply_book_type_rules(data)
    _check_duplicate_book(data)
    book = BookCatalog.create(**data)
    invalidate_cache(_summary_prefix('book-catalogs'))
    return _success(_book_doc(book), 201)


@api.route('/book-catalogs', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_book_catalogs():
    features = APIFeatures(BookCatalog.query, request.args).filter().sort().limit_fields().paginate()
    books = features.query.all()
    total = BookCatalog.query.find(features.filter_query).count()
    return _success([_book_doc(b) for b in books], results=len(books), totalCount=total)


@api.route('/book-catalogs/<int:book_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_book_catalog(book_id):
    return _success(_book_doc(BookCatalog.query.get_or_404(book_id, 'No book catalog found with that ID.')))


@api.route('/book-catalogs/<int:book_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_book_catalog(book_id):
    book = BookCatalog.query.get_or_404(book_id, 'No book catalog found with that ID.')
    changes = _normalise_book_refs(_pick(_check_text(_body(), 'bookName'), BOOK_FIELDS))

    merged = {field: getattr(book, field, None) for field in BOOK_FIELDS}
    merged.update(changes)
    if any(field in changes for field in ('bookName', 'publication', 'subtitle')):
        _check_duplicate_book(merged, exclude_id=book.id)
    _apply_book_type_rules(merged)

    book.update(**merged).save()
    return _success(_book_doc(book))


@api.route('/book-catalogs/<int:book_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_book_catalog(book_id):
    BookCatalog.query.get_or_404(book_id, 'No book catalog found with that ID.').delete()
    invalidate_cache(_summary_prefix('book-catalogs'))
    return _no_content()


# --- Stationery items ---

STATIONERY_FIELDS = ('itemName', 'category', 'price', 'marginPercentage',
                     'customerDiscountPercentage', 'companyDiscountPercentage', 'status')


def _check_duplicate_item(name, exclude_id=None):
    filter_doc = {'itemName': (name or '').strip()}
    if exclude_id is not None:
        filter_doc['id'] = {'$ne': exclude_id}
    if StationeryItem.query.find(filter_doc).first():
        raise AppError('A stationery item with this name already exists.', 409)


@api.route('/stationery-items', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_stationery_item():
    data = _pick(_check_text(_body(), 'itemName'), STATIONERY_FIELDS)
    _check_duplicate_item(data.get('itemName'))
    item = StationeryItem.create(**data)
    invalidate_cache(_summary_prefix('stationery-items'))
    return _success(item.to_public(), 201)


@api.route('/stationery-items', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_stationery_items():
    features = APIFeatures(StationeryItem.query, request.args).filter().sort().limit_fields().paginate()
    items = features.query.all()
    return _success(_public_list(items), results=len(items))


@api.route('/stationery-items/<int:item_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_stationery_item(item_id):
    return _success(StationeryItem.query.get_or_404(item_id).to_public())


@api.route('/stationery-items/<int:item_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_stationery_item(item_id):
    item = StationeryItem.query.get_or_404(item_id)
    changes = _pick(_check_text(_body(), 'itemName'), STATIONERY_FIELDS)
    if 'itemName' in changes:
        _check_duplicate_item(changes['itemName'], exclude_id=item.id)
    item.update(**changes).save()
    return _success(item.to_public())


@api.route('/stationery-items/<int:item_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_stationery_item(item_id):
    StationeryItem.query.get_or_404(item_id).delete()
    invalidate_cache(_summary_prefix('stationery-items'))
    return _no_content()


# --- Customers ---

CUSTOMER_FIELDS = ('customerName', 'schoolCode', 'branch', 'city', 'contactPerson', 'mobileNumber',
                   'email', 'gstNumber', 'aadharNumber', 'panNumber', 'shopAddress', 'homeAddress',
                   'customerType', 'image', 'discount', 'openingBalance', 'status')


def _check_school_customer(data):
    if data.get('customerType') == 'School':
        if not data.get('branch'):
            raise AppError('For School customers, Branch is required.', 400)
        if not data.get('schoolCode'):
            raise AppError('For School customers, School Code is required.', 400)
    if data.get('branch') not in (None, ''):
        branch_id = _to_int(data['branch'], 'Invalid Branch ID provided')
        if Branch.query.get(branch_id) is None:
            raise AppError('No branch found with that ID', 404)
        data['branch'] = branch_id
    return data


def _customer_doc(customer):
    doc = customer.to_public()
    _embed(doc, 'branch', Branch, 'name', 'location')
    _embed(doc, 'city', City, 'name')
    return doc


@api.route('/customers', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_customers():
    features = APIFeatures(Customer.query, request.args).filter().sort().limit_fields().paginate()
    customers = features.query.all()
    total = Customer.query.find(features.filter_query).count()
    return _success([_customer_doc(c) for c in customers],
                    results=len(customers), totalRecords=total)


@api.route('/customers', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_customer():
    data = _check_school_customer(_pick(_body(), CUSTOMER_FIELDS))
    customer = Customer.create(**data)
    invalidate_cache(_summary_prefix('customers'))
    return _success(_customer_doc(customer), 201)


@api.route('/customers/<int:customer_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_customer(customer_id):
    return _success(_customer_doc(Customer.query.get_or_404(customer_id)))


@api.route('/customers/<int:customer_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_customer(customer_id):
    customer = Customer.query.get_or_404(customer_id)
    changes = _pick(_body(), CUSTOMER_FIELDS)
    merged = {field: getattr(customer, field, None) for field in ('customerType', 'branch', 'schoolCode')}
    merged.update(changes)
    merged = _check_school_customer(merged)
    if 'branch' in changes:
        changes['branch'] = merged['branch']
    customer.update(**changes).save()
    return _success(_customer_doc(customer))


@api.route('/customers/<int:customer_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_customer(customer_id):
    Customer.query.get_or_404(customer_id).delete()
    invalidate_cache(_summary_prefix('customers'))
    return _no_content()


# --- Transports ---

@api.route('/transports', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_transports():
    features = APIFeatures(Transport.query, request.args).filter().sort().limit_fields().paginate()
    transports = features.query.all()
    total = Transport.query.find(features.filter_query).count()
    return _success(_public_list(transports), results=len(transports), totalCount=total)


@api.route('/transports/<int:transport_id>', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_transport(transport_id):
    return _success(Transport.query.get_or_404(transport_id).to_public())


TRANSPORT_FIELDS = ('name',)


@api.route('/transports', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_transport():
    transport = Transport.create(**_pick(_body(), TRANSPORT_FIELDS))
    invalidate_cache(_summary_prefix('transports'))
    return _success(transport.to_public(), 201)


@api.route('/transports/<int:transport_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_transport(transport_id):
    transport = Transport.query.get_or_404(transport_id)
    transport.update(**_pick(_body(), TRANSPORT_FIELDS)).save()
    return _success(transport.to_public())


@api.route('/transports/<int:transport_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_transport(transport_id):
    Transport.query.get_or_404(transport_id).delete()
    invalidate_cache(_summary_prefix('transports'))
    return _no_content()


# --- Branches ---

BRANCH_FIELDS = ('name', 'location', 'shopOwnerName', 'shopGstId', 'address',
                 'mobileNumber', 'logoImage', 'status', 'dbName')


def _check_branch_conflicts(data, exclude_id=None):
    checks = (
        ('name', 'A branch with this name already exists.'),
        ('shopGstId', 'A branch with this GST ID already exists.'),
        ('mobileNumber', 'A branch with this mobile number already exists.'),
    )
    for field, message in checks:
        value = data.get(field)
        if _is_blank(value):
            continue
        value = value.strip() if isinstance(value, str) else value
        if field == 'shopGstId':
            value = value.upper()
        filter_doc = {field: value}
        if exclude_id is not None:
            filter_doc['id'] = {'$ne': exclude_id}
        if Branch.query.find(filter_doc).first():
            raise AppError(message, 409)


def _is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


@api.route('/branches', methods=['POST'])
@protect
@restrict_to('super_admin')
def create_branch():
    data = _pick(_check_text(_body(), 'name', 'shopGstId'), BRANCH_FIELDS)
    if any(_is_blank(data.get(f)) for f in ('name', 'location', 'shopOwnerName', 'address')):
        raise AppError('Please provide the branch name, location, owner name, and address.', 400)
    _check_branch_conflicts(data)
    branch = Branch.create(createdBy=g.user.id, **data)
    logger.info(f"[Branch DB] Branch {branch.name} registered (db: {branch.database_name()})")
    return _success(branch.to_public(), 201)


@api.route('/branches', methods=['GET'])
@protect
@restrict_to(*BRANCH_READ_ROLES)
def list_branches():
    branches = Branch.query.order_by(Branch.name).all()
    return _success(_public_list(branches), results=len(branches))


@api.route('/branches/<int:branch_id>', methods=['GET'])
@protect
@restrict_to(*BRANCH_READ_ROLES)
def get_branch(branch_id):
    return _success(Branch.query.get_or_404(branch_id, 'No branch found with that ID.').to_public())


@api.route('/branches/<int:branch_id>', methods=['PATCH'])
@protect
@restrict_to('super_admin')
def update_branch(branch_id):
    branch = Branch.query.get_or_404(branch_id, 'No branch found with that ID to update.')
    changes = _pick(_check_text(_body(), 'name', 'shopGstId'), BRANCH_FIELDS)
    _check_branch_conflicts(changes, exclude_id=branch.id)
    branch.update(**changes).save()
    return _success(branch.to_public())


@api.route('/branches/<int:branch_id>', methods=['DELETE'])
@protect
@restrict_to('super_admin')
def delete_branch(branch_id):
    Branch.query.get_or_404(branch_id, 'No branch found with that ID to delete.').delete()
    return _no_content()


# --- Stock managers ---

STOCK_MANAGER_FIELDS = ('name', 'email', 'phone', 'address')


def _check_stock_manager_conflicts(data, exclude_id=None):
    for field in ('email', 'phone'):
        value = data.get(field)
        if _is_blank(value):
            continue
        value = value.strip()
        if field == 'email':
            value = value.lower()
        filter_doc = {field: value}
        if exclude_id is not None:
            filter_doc['id'] = {'$ne': exclude_id}
        if StockManager.query.find(filter_doc).first():
            raise AppError(f'Stock manager with this {field} already exists.', 400)


@api.route('/stock-managers', methods=['GET'])
@protect
@restrict_to('super_admin')
def list_stock_managers():
    managers = StockManager.query.order_by(StockManager.createdAt.desc()).all()
    return _success(_public_list(managers), results=len(managers))


@api.route('/stock-managers', methods=['POST'])
@protect
@restrict_to('super_admin')
def create_stock_manager():
    data = _check_text(_body(), 'email', 'phone', 'password')
    if any(_is_blank(data.get(f)) for f in STOCK_MANAGER_FIELDS + ('password',)):
        raise AppError('All fields (name, email, phone, password, address) are required.', 400)
    _check_stock_manager_conflicts(data)
    manager = StockManager(**_pick(data, STOCK_MANAGER_FIELDS))
    manager.set_password(data['password'])
    manager.save()
    return _success(manager.to_public(), 201)


@api.route('/stock-managers/<int:manager_id>', methods=['GET'])
@protect
@restrict_to('super_admin')
def get_stock_manager(manager_id):
    return _success(StockManager.query.get_or_404(manager_id).to_public())


@api.route('/stock-managers/<int:manager_id>', methods=['PATCH'])
@protect
@restrict_to('super_admin')
def update_stock_manager(manager_id):
    manager = StockManager.query.get_or_404(manager_id)
    data = _check_text(_body(), 'email', 'phone', 'password')
    changes = _pick(data, STOCK_MANAGER_FIELDS)
    _check_stock_manager_conflicts(changes, exclude_id=manager.id)
    manager.update(**changes)
    if data.get('password'):
        manager.set_password(data['password'])
    manager.save()
    return _success(manager.to_public())


@api.route('/stock-managers/<int:manager_id>', methods=['DELETE'])
@protect
@restrict_to('super_admin')
def delete_stock_manager(manager_id):
    StockManager.query.get_or_404(manager_id).delete()
    return _no_content()


# --- Branch admins ---

def _branch_admin_doc(admin):
    doc = admin.to_public()
    _embed(doc, 'branchId', Branch, 'name', 'location')
    _embed(doc, 'employeeId', Employee, 'name', 'mobileNumber')
    return doc


@api.route('/branch-admins', methods=['POST'])
@protect
@restrict_to('super_admin')
def create_branch_admin():
    data = _check_text(_body(), 'email', 'password')
    employee_id, email, password = data.get('employeeId'), data.get('email'), data.get('password')
    if not employee_id or not email or not password:
        raise AppError('Please provide employee ID, email, and password.', 400)

    employee = Employee.query.get(employee_id)
    if employee is None:
        raise AppError('No employee found with the provided ID.', 404)
    if BranchAdmin.query.filter_by(employeeId=employee.id).first():
        raise AppError('This employee is already a branch admin.', 409)
    if BranchAdmin.query.filter_by(email=email.strip().lower()).first():
        raise AppError('This email is already registered to another branch admin.', 409)

    admin = BranchAdmin(name=employee.name, email=email, branchId=employee.branchId, employeeId=employee.id)
    admin.set_password(password)
    admin.save()
    return _success({'admin': _branch_admin_doc(admin)}, 201)


@api.route('/branch-admins', methods=['GET'])
@protect
@restrict_to('super_admin')
def list_branch_admins():
    admins = BranchAdmin.query.all()
    return _success([_branch_admin_doc(a) for a in admins], results=len(admins))


@api.route('/branch-admins/<int:admin_id>', methods=['GET'])
@protect
@restrict_to('super_admin')
def get_branch_admin(admin_id):
    admin = BranchAdmin.query.get_or_404(admin_id, 'No admin found with this ID.')
    return _success({'admin': _branch_admin_doc(admin)})


@api.route('/branch-admins/<int:admin_id>', methods=['PATCH'])
@protect
@restrict_to('super_admin')
def update_branch_admin(admin_id):
    admin = BranchAdmin.query.get_or_404(admin_id, 'No admin found with this ID to update.')
    data = _check_text(_body(), 'email', 'password')
    admin.update(**_pick(data, ('email', 'status')))
    if data.get('password'):
        admin.set_password(data['password'])
    admin.save()
    return _success({'admin': _branch_admin_doc(admin)})


@api.route('/branch-admins/<int:admin_id>', methods=['DELETE'])
@protect
@restrict_to('super_admin')
def delete_branch_admin(admin_id):
    BranchAdmin.query.get_or_404(admin_id, 'No admin found with this ID to delete.').delete()
    return _no_content()


# --- Employees ---

EMPLOYEE_FIELDS = ('name', 'email', 'role', 'branchId', 'mobileNumber', 'status')


def _scoped_employee_query():
    """Branch admins only see employees of their own branch."""
    query = Employee.query
    if g.user.role == 'branch_admin':
        query = query.filter_by(branchId=g.user.branchId)
    return query


def _employee_doc(employee):
    return _embed(employee.to_public(), 'branchId', Branch, 'name', 'location')


def _check_employee_branch(data):
    if data.get('branchId') in (None, ''):
        return data
    data['branchId'] = _to_int(data['branchId'], 'Invalid Branch ID provided')
    if Branch.query.get(data['branchId']) is None:
        raise AppError('Provided branch ID does not exist.', 404)
    if g.user.role == 'branch_admin' and data['branchId'] != g.user.branchId:
        raise AppError('You can only manage employees of your own branch.', 403)
    return data


@api.route('/employees', methods=['GET'])
@protect
@restrict_to('super_admin', 'branch_admin')
def list_employees():
    employees = _scoped_employee_query().order_by(Employee.name).all()
    return _success([_employee_doc(e) for e in employees], results=len(employees))


@api.route('/employees', methods=['POST'])
@protect
@restrict_to('super_admin', 'branch_admin')
def create_employee():
    data = _check_text(_body(), 'email', 'password')
    fields = _pick(data, EMPLOYEE_FIELDS)
    if g.user.role == 'branch_admin' and fields.get('branchId') in (None, ''):
        fields['branchId'] = g.user.branchId
    _check_employee_branch(fields)
    if not data.get('password'):
        raise AppError('Please enter your password', 400)
    if fields.get('email') and Employee.query.filter_by(email=fields['email'].strip().lower()).first():
        raise AppError('An employee with this email already exists.', 409)

    employee = Employee(**fields)
    employee.set_password(data['password'])
    employee.save()
    return _success(_employee_doc(employee), 201)


@api.route('/employees/<int:employee_id>', methods=['GET'])
@protect
@restrict_to('super_admin', 'branch_admin')
def get_employee(employee_id):
    employee = _scoped_employee_query().filter_by(id=employee_id).first()
    if employee is None:
        raise AppError('No employee found with that ID', 404)
    return _success(_employee_doc(employee))


@api.route('/employees/<int:employee_id>', methods=['PATCH'])
@protect
@restrict_to('super_admin', 'branch_admin')
def update_employee(employee_id):
    employee = _scoped_employee_query().filter_by(id=employee_id).first()
    if employee is None:
        raise AppError('No employee found with that ID', 404)
    data = _check_text(_body(), 'email', 'password')
    changes = _check_employee_branch(_pick(data, EMPLOYEE_FIELDS))
    employee.update(**changes)
    if data.get('password'):
        employee.set_password(data['password'])
    employee.save()
    return _success(_employee_doc(employee))


@api.route('/employees/<int:employee_id>', methods=['DELETE'])
@protect
@restrict_to('super_admin', 'branch_admin')
def delete_employee(employee_id):
    employee = _scoped_employee_query().filter_by(id=employee_id).first()
    if employee is None:
        raise AppError('No employee found with that ID', 404)
    employee.delete()
    return _no_content()


# --- Sets ---

def _set_doc(set_obj):
    doc = set_obj.to_public()
    _embed(doc, 'customer', Customer, 'customerName', 'schoolCode')
    _embed(doc, 'class', SchoolClass, 'name')
    doc['books'] = [_embed(dict(line), 'book', BookCatalog, 'bookName', 'subtitle', 'commonPrice')
                    for line in doc.get('books', [])]
    doc['stationeryItems'] = [_embed(dict(line), 'item', StationeryItem, 'itemName', 'price')
                              for line in doc.get('stationeryItems', [])]
    return doc


def _set_lines(lines, ref_field):
    if lines is None:
        return []
    if not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines):
        raise AppError(f'Each {ref_field} entry must be an object with {ref_field}, quantity and price.', 400)
    result = []
    for line in lines:
        line = _pick(line, (ref_field, 'quantity', 'price', 'status'))
        if line.get(ref_field) not in (None, ''):
            line[ref_field] = _to_int(line[ref_field], f'Invalid {ref_field} ID provided')
        result.append(line)
    return result


@api.route('/sets', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def create_set():
    data = _body()
    if not data.get('customer') or not data.get('class'):
        raise AppError('Customer and Class are required to create a set.', 400)
    customer_id = _to_int(data['customer'], 'Invalid Customer ID provided')
    class_id = _to_int(data['class'], 'Invalid Class ID provided')

    if Set.query.find({'customer': customer_id, 'class': class_id}).first():
        raise AppError('A set already exists for this customer and class. '
                       'Please update the existing set instead.', 409)

    set_obj = Set.create(**{
        'customer': customer_id,
        'class': class_id,
        'books': _set_lines(data.get('books'), 'book'),
        'stationeryItems': _set_lines(data.get('stationeryItems'), 'item'),
    })
    return _success({'set': _set_doc(set_obj)}, 201, message='Set created successfully!')


@api.route('/sets', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def get_set_by_filters():
    customer_id, class_id = request.args.get('customerId'), request.args.get('classId')
    if not customer_id or not class_id:
        raise AppError('Customer ID and Class ID are required to fetch a set.', 400)
    set_obj = Set.query.find({
        'customer': _to_int(customer_id, 'Invalid Customer ID provided'),
        'class': _to_int(class_id, 'Invalid Class ID provided'),
    }).first()
    if set_obj is None:
        return _success({'set': None},
                        message='No existing set found for the provided criteria. You can create a new one.')
    return _success({'set': _set_doc(set_obj)}, message='Set fetched successfully!')


@api.route('/sets/all', methods=['GET'])
@protect
@restrict_to(*CATALOG_ROLES)
def list_sets():
    sets = Set.query.options({'id': 1, 'customer': 1, 'class': 1, '_id': 0}).all()
    return _success({'sets': [s.to_dict() for s in sets]}, results=len(sets))


@api.route('/sets/<int:set_id>', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_set(set_id):
    set_obj = Set.query.get_or_404(set_id, 'No set found with that ID.')
    data = _body()

    customer_id = _to_int(data['customer'], 'Invalid Customer ID provided') if data.get('customer') else set_obj.customer
    class_id = _to_int(data['class'], 'Invalid Class ID provided') if data.get('class') else getattr(set_obj, 'class')
    if customer_id != set_obj.customer or class_id != getattr(set_obj, 'class'):
        conflict = Set.query.find({'customer': customer_id, 'class': class_id, 'id': {'$ne': set_obj.id}}).first()
        if conflict:
            raise AppError('A set with these Customer and Class already exists. '
                           'Cannot update to this combination.', 409)

    changes = {'customer': customer_id, 'class': class_id}
    if 'books' in data:
        changes['books'] = _set_lines(data['books'], 'book')
    if 'stationeryItems' in data:
        changes['stationeryItems'] = _set_lines(data['stationeryItems'], 'item')
    set_obj.update(**changes).save()
    return _success({'set': _set_doc(set_obj)}, message='Set updated successfully!')


@api.route('/sets/<int:set_id>', methods=['DELETE'])
@protect
@restrict_to(*CATALOG_ROLES)
def delete_set(set_id):
    Set.query.get_or_404(set_id, 'No set found with that ID.').delete()
    return _no_content()


@api.route('/sets/copy', methods=['POST'])
@protect
@restrict_to(*CATALOG_ROLES)
def copy_set():
    data = _body()
    source_id = data.get('sourceSetId')
    target_customer, target_class = data.get('targetCustomerId'), data.get('targetClassId')
    if not source_id or not target_customer or not target_class:
        raise AppError('Source Set ID, Target Customer ID, and Target Class ID are required for copying.', 400)

    source = Set.query.get(source_id)
    if source is None:
        raise AppError('Source set not found.', 404)

    target_customer = _to_int(target_customer, 'Invalid Customer ID provided')
    target_class = _to_int(target_class, 'Invalid Class ID provided')
    if Set.query.find({'customer': target_customer, 'class': target_class}).first():
        raise AppError('A set already exists for this customer and class.', 409)

    # Copied lines start over as pending
    books = [{'book': b['book'], 'quantity': b['quantity'], 'price': b['price'], 'status': 'pending'}
             for b in source.books]
    stationery = []
    if data.get('copyStationery'):
        stationery = [{'item': s['item'], 'quantity': s['quantity'], 'price': s['price'], 'status': 'pending'}
                      for s in source.stationeryItems]

    copied = Set.create(**{'customer': target_customer, 'class': target_class,
                           'books': books, 'stationeryItems': stationery})
    return _success({'set': _set_doc(copied)}, 201, message='Set copied successfully!')


def _find_set_line(set_obj, item_type, item_id):
    lines, ref_field = (set_obj.books, 'book') if item_type == 'book' else (set_obj.stationeryItems, 'item')
    for index, line in enumerate(lines):
        if str(line.get(ref_field)) == str(item_id):
            return lines, index
    raise AppError(f"Item with ID {item_id} not found in the set's {item_type} list.", 404)


@api.route('/sets/<int:set_id>/item-status', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def update_set_item_status(set_id):
    data = _body()
    item_id, item_type, status = data.get('itemId'), data.get('itemType'), data.get('status')
    if not item_id or item_type not in ('book', 'stationery') or status not in ITEM_STATUSES:
        raise AppError('Item ID, item type ("book" or "stationery"), and a valid status '
                       '("active", "pending", or "clear") are required.', 400)

    set_obj = Set.query.get_or_404(set_id, 'Set not found.')
    lines, index = _find_set_line(set_obj, item_type, item_id)
    lines[index]['status'] = status
    if status == 'clear':
        lines[index]['clearedDate'] = datetime.now(timezone.utc).replace(tzinfo=None)
    else:
        lines[index].pop('clearedDate', None)
    set_obj.save()
    return _success({'set': _set_doc(set_obj)},
                    message=f'Status of {item_type} item updated successfully to "{status}"!')


@api.route('/sets/<int:set_id>/remove-item', methods=['PATCH'])
@protect
@restrict_to(*CATALOG_ROLES)
def remove_set_item(set_id):
    data = _body()
    item_id, item_type = data.get('itemId'), data.get('itemType')
    if not item_id or item_type not in ('book', 'stationery'):
        raise AppError('Item ID and valid Item Type ("book" or "stationery") are required.', 400)

    set_obj = Set.query.get_or_404(set_id, 'Set not found.')
    lines, index = _find_set_line(set_obj, item_type, item_id)
    del lines[index]
    set_obj.save()
    return _success({'set': _set_doc(set_obj)}, message=f'{item_type} item removed from set successfully!')


# --- Reports ---

def _report_timestamp():
    return datetime.now(timezone.utc).isoformat()


@api.route('/reports/overall', methods=['GET'])
@protect
@restrict_to('super_admin')
def overall_report():
    return jsonify({'success': True, 'data': {
        'totalBranches': Branch.query.count(),
        'activeBranches': Branch.query.filter_by(status='active').count(),
        'inactiveBranches': Branch.query.filter_by(status='inactive').count(),
        'totalBranchAdmins': BranchAdmin.query.count(),
        'totalEmployees': Employee.query.count(),
        'reportGeneratedAt': _report_timestamp(),
    }})


@api.route('/reports/branch-overview', methods=['GET'])
@protect
@restrict_to('super_admin')
def branch_overview_report():
    report = []
    for branch in Branch.query.order_by(Branch.name).all():
        report.append({
            'id': branch.id,
            'name': branch.name,
            'location': branch.location,
            'status': branch.status,
            'employeeCount': Employee.query.filter_by(branchId=branch.id).count(),
        })
    return jsonify({'success': True, 'data': {'report': report, 'reportGeneratedAt': _report_timestamp()}})


@api.route('/reports/branch-details/<int:branch_id>', methods=['GET'])
@protect
@restrict_to('super_admin')
def branch_details_report(branch_id):
    branch = Branch.query.get_or_404(branch_id, f'Branch not found with ID {branch_id}')
    employees = Employee.query.filter_by(branchId=branch.id).order_by(Employee.name).all()
    admin = BranchAdmin.query.filter_by(branchId=branch.id).first()
    return jsonify({'success': True, 'data': {
        'id': branch.id,
        'name': branch.name,
        'location': branch.location,
        'status': branch.status,
        'contactEmail': getattr(branch, 'contactEmail', None),
        'employeeCount': len(employees),
        'employees': [{'id': e.id, 'name': e.name, 'position': e.role, 'email': e.email} for e in employees],
        'adminName': admin.name if admin else 'N/A',
        'adminEmail': admin.email if admin else 'N/A',
        'reportGeneratedAt': _report_timestamp(),
    }})


# --- Summary counts ---

SUMMARY_MODELS = {
    'zones': (Zone, 'Zones'),
    'cities': (City, 'Cities'),
    'classes': (SchoolClass, 'Classes'),
    'publications': (Publication, 'Publications'),
    'languages': (Language, 'Languages'),
    'book-catalogs': (BookCatalog, 'Book catalogs'),
    'stationery-items': (StationeryItem, 'Stationery items'),
    'customers': (Customer, 'Customers'),
    'transports': (Transport, 'Transports'),
}
SUMMARY_ROLES = {'classes': ('stock_manager', 'super_admin')}


@cache_response(ttl=300, prefix=_summary_prefix)
def _summary_response(entity):
    model_cls, label = SUMMARY_MODELS[entity]
    count = model_cls.query.count()
    return jsonify({'success': True, 'data': {'count': count},
                    'message': f'{label} count fetched successfully'})


@api.route('/summary/<entity>', methods=['GET'])
@protect
def summary_count(entity):
    if entity not in SUMMARY_MODELS:
        raise AppError(f"Can't find {request.path} on this server!", 404)
    if g.user.role not in SUMMARY_ROLES.get(entity, CATALOG_ROLES):
        raise AppError('You do not have permission to perform this action', 403)
    return _summary_response(entity=entity)


# --- Dashboard ---

def _bill_number(value):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


@api.route('/dashboard/metrics', methods=['GET'])
@protect
def dashboard_metrics():
    raw_branch_id = request.args.get('branchId')
    if not raw_branch_id:
        raise AppError('Branch ID is required for dashboard metrics', 400)
    branch_id = _to_int(raw_branch_id, 'Invalid Branch ID provided')

    customer_ids = [c['id'] for c in Customer.collection().find({'branch': branch_id}, {'id': 1})]
    set_filter = {'customer': {'$in': customer_ids}}
    total_sets = Set.collection().count_documents(set_filter)
    totals = list(Set.collection().aggregate([
        {'$match': set_filter},
        {'$group': {'_id': None, 'total': {'$sum': '$totalPrice'}}},
    ]))
    total_value = totals[0]['total'] if totals else 0

    cash, upi = 0, 0
    bill_numbers = []
    for sale in Sale.query.filter_by(branch=branch_id).all():
        if sale.paymentMethod == 'cash':
            cash += sale.totalAmount
        elif sale.paymentMethod == 'upi':
            upi += sale.totalAmount
        number = _bill_number(sale.billNo)
        if number is not None:
            bill_numbers.append(number)

    return _success({
        'totalSetsSold': total_sets,
        'totalValueSetsSold': total_value,
        'totalAmountCash': cash,
        'totalAmountUpi': upi,
        'nextBillNo': max(bill_numbers) + 1 if bill_numbers else 1001,
    })
