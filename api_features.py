"""
Query-string driven filtering, sorting, field selection and pagination
for list endpoints.

    features = (APIFeatures(Customer.query, request.args)
                .filter().sort().limit_fields().paginate())
    customers = features.query.all()
    total = Customer.query.find(features.filter_query).count()
"""
import re
import logging

logger = logging.getLogger(__name__)

EXCLUDED_PARAMS = ('page', 'sort', 'limit', 'fields')
COMPARISON_OPERATORS = ('gt', 'gte', 'lt', 'lte')
BRACKET_KEY_RE = re.compile(r'^([^\[\]]+)((?:\[[^\[\]]*\])*)$')

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100
DEFAULT_SORT = '-createdAt'


def _iter_params(params):
    """Yield (key, value) pairs in order; repeated keys appear once per value."""
    if hasattr(params, 'getlist'):
        return params.items(multi=True)
    return params.items()


def _last_param(params, name):
    """Last value of a possibly repeated parameter, matching filter()."""
    if hasattr(params, 'getlist'):
        values = params.getlist(name)
        return values[-1] if values else None
    return params.get(name)


def _split_key(key):
    match = BRACKET_KEY_RE.match(key)
    if not match:
        return [key]
    head, brackets = match.groups()
    return [head] + re.findall(r'\[([^\[\]]*)\]', brackets)


def _positive_int(value, default):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _cast_number(value):
    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _cast_bool(value):
    if isinstance(value, str) and value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    return value


class APIFeatures:
    def __init__(self, query, query_string):
        self.query = query
        self.query_string = query_string if query_string is not None else {}
        self.filter_query = {}

    def _caster(self, field):
        model_cls = getattr(self.query, 'model_cls', None)
        numeric = set(getattr(model_cls, 'numeric_fields', ())) | {'id'}
        boolean = set(getattr(model_cls, 'boolean_fields', ()))
        if field in numeric:
            return _cast_number
        if field in boolean:
            return _cast_bool
        return None

    def _build_filter(self):
        filter_doc = {}
        for key, value in _iter_params(self.query_string):
            if key in EXCLUDED_PARAMS:
                continue
            parts = _split_key(key)
            if any(part.startswith('$') or not part for part in parts):
                logger.warning(f"[APIFeatures] Dropped unsafe query key: {key}")
                continue
            parts = [f'${part}' if i > 0 and part in COMPARISON_OPERATORS else part
                     for i, part in enumerate(parts)]

            caster = self._caster(parts[0])
            if caster is not None:
                value = caster(value)

            target = filter_doc
            for part in parts[:-1]:
                if not isinstance(target.get(part), dict):
                    target[part] = {}
                target = target[part]
            # Last value wins for repeated params
            target[parts[-1]] = value
        return filter_doc

    def filter(self):
        self.filter_query = self._build_filter()
        self.query = self.query.find(self.filter_query)
        return self

    def sort(self):
        sort_by = _last_param(self.query_string, 'sort') or DEFAULT_SORT
        fields = [field.strip() for field in sort_by.split(',') if field.strip()]
        self.query = self.query.order_by(*(fields or [DEFAULT_SORT]))
        return self

    def limit_fields(self):
        model_cls = getattr(self.query, 'model_cls', None)
        hidden = tuple(getattr(model_cls, 'hidden_fields', ('password_hash',)))
        fields = _last_param(self.query_string, 'fields')

        include, exclude = {}, {}
        if fields:
            for field in (f.strip() for f in fields.split(',')):
                if not field:
                    continue
                if field.startswith('-'):
                    exclude[field[1:]] = 0
                elif field not in hidden:
                    include[field] = 1

        if include:
            # Mongo cannot mix inclusion and exclusion except for _id
            if '_id' in exclude:
                include['_id'] = 0
            projection = include
        else:
            projection = dict(exclude)
            for field in hidden:
                projection[field] = 0
        self.query = self.query.options(projection)
        return self

    def paginate(self):
        page = _positive_int(_last_param(self.query_string, 'page'), DEFAULT_PAGE)
        limit = _positive_int(_last_param(self.query_string, 'limit'), DEFAULT_LIMIT)
        self.page = page
        self.limit = limit
        self.query = self.query.skip((page - 1) * limit).limit(limit)
        return self
