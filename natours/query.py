from copy import copy
from collections import namedtuple
from collections.abc import Mapping

from sqlalchemy.orm import Query

from .bag import ModelPropertyBags
from . import handlers
from .exc import InvalidQueryError
from .util import ApiFeaturesSettingsHandler


#: What a request has turned into.
#: filter: {field: value | {'$op': value}}
#: sort: [(field, +1|-1)]
#: projection: {field: 1|0}
#: skip, limit: int, or None when pagination was not requested
QueryPlan = namedtuple('QueryPlan', ('filter', 'sort', 'projection', 'skip', 'limit'))


def normalize_request(request):
    """ Convert a request into a plain dict

        Accepts:
        * None: an empty request
        * a dict of `key: value | list[value] | dict`, like the one a bracket-aware query string parser gives
        * a multi-dict with `getlist()`, e.g. werkzeug's MultiDict. Repeated keys give a list.

        Single-item lists are unwrapped.

        :raises InvalidQueryError: not a mapping
        :rtype: dict
    """
    if request is None:
        return {}

    if hasattr(request, 'getlist'):
        items = ((key, request.getlist(key)) for key in request.keys())
    elif isinstance(request, Mapping):
        items = request.items()
    else:
        raise InvalidQueryError('Request must be a mapping, not {}'.format(type(request)))

    normalized = {}
    for key, value in items:
        if isinstance(value, (list, tuple)) and len(value) == 1:
            value = value[0]
        normalized[str(key)] = value
    return normalized


class ApiFeatures(object):
    """ Query features of a list endpoint: filter, sort, select fields, paginate

        Initialize it once per model, with settings, and keep it wrapped into Reusable();
        then, for every request:

            features = tour_features.from_query(ssn.query(Tour)).request(request.args)
            features = features.filter().sort().limit_fields().paginate()
            tours = features.query.all()

        Stage methods only record that the stage was invoked.
        The query is built by the `query` property, with the stages applied in a fixed order.
        Nothing is loaded until the caller iterates the query.
    """

    # The class to use for getting structural data from a model
    _MODEL_PROPERTY_BAGS_CLS = ModelPropertyBags

    def __init__(self, model, handler_settings=None):
        """ Init query features

        :param model: SqlAlchemy model to make queries for.
        :param handler_settings: Settings for stage handlers.
            These are just plain kwargs names for every handler object's __init__ method.
            The `ApiFeaturesSettingsHandler` object gives every handler the kwargs it wants.

            To disable a stage, give `<stage>_enabled=False`.

            See ApiFeaturesSettingsDict for the list of all settings.
        :type handler_settings: dict | ApiFeaturesSettingsDict | None
        :raises KeyError: unknown settings
        :raises InvalidColumnError: settings mention unknown columns
        """
        # Init with the model
        self._model = model
        self._bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(self._model)

        # Initialize the settings
        self._handler_settings = ApiFeaturesSettingsHandler(dict(handler_settings or {}))

        # Initialized later
        self._query = None  # type: Query | None
        self._request = {}
        #: Names of invoked stages
        self._stages = set()

        # Get ready: stage handlers
        self._init_handlers()

        # NOTE: this object is copy()ed in order to make it reusable.
        # Every property that can't be safely reused has to be copied inside __copy__().

    def __copy__(self):
        """ ApiFeatures can be reused: wrap it with Reusable() which performs the automatic copy() """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)

        # Copy stage handlers
        for name in self.HANDLER_NAMES:
            attr_name = 'handler_' + name
            setattr(result, attr_name, copy(getattr(result, attr_name)))

        # Re-initialize properties that can't be copied
        result._stages = set(self._stages)
        result._request = dict(self._request)

        return result

    def from_query(self, query):
        """ Specify a custom sqlalchemy query to work with.

        It can have, say, initial filtering already applied to it:
        e.g. reviews of a single tour.

        :param query: Initial sqlalchemy query to work with
        :type query: sqlalchemy.orm.Query
        """
        self._query = query
        return self

    def with_session(self, ssn):
        """ Query with the given sqlalchemy Session """
        self._query = self._from_query().with_session(ssn)
        return self

    def request(self, request):
        """ Give the request to work with

        :param request: The request: see normalize_request()
        :raises InvalidQueryError: the request is not a mapping
        """
        if any(self._handler(name).input_received for name in self.HANDLER_NAMES):
            raise RuntimeError('{!r}: the request has already been processed'.format(self))
        self._request = normalize_request(request)
        return self

    # region Stages

    def filter(self):
        """ Filter by every non-reserved request key """
        return self._invoke('filter')

    def sort(self):
        """ Sort by the `sort` request key """
        return self._invoke('sort')

    def limit_fields(self):
        """ Select fields by the `fields` request key """
        return self._invoke('fields')

    def paginate(self):
        """ Paginate by the `page` and `limit` request keys """
        return self._invoke('paginate')

    def _invoke(self, handler_name):
        self._stages.add(handler_name)
        return self

    # endregion

    def end(self):
        """ Get the resulting sqlalchemy Query object

        This method can raise errors that the store gives for the request:

        :raises InvalidColumnError: Filter by an unknown field
        :raises InvalidQueryError: Invalid filter value; mixed field inclusion and exclusion
        :raises DisabledError: the request uses a disabled stage
        :rtype: sqlalchemy.orm.Query
        """
        self._receive_input()

        # The query
        q = self._from_query()

        # Apply every handler
        for name in self.HANDLER_NAMES:
            handler = self._handler(name)
            if self._is_stage_used(name):
                q = handler.alter_query(q)
            else:
                q = handler.alter_query_forced(q)

        return q

    @property
    def query(self):
        """ The resulting lazy sqlalchemy Query. See end() """
        return self.end()

    @property
    def plan(self):
        """ Get the QueryPlan: what the request has turned into

        Stages that were not used give empty values.

        :rtype: QueryPlan
        """
        self._receive_input()

        paginate = self.handler_paginate.get_final_input_value() if self._is_stage_used('paginate') else {}
        return QueryPlan(
            filter=self.handler_filter.get_final_input_value() if self._is_stage_used('filter') else {},
            sort=self.handler_sort.get_final_input_value() if self._is_stage_used('sort') else [],
            projection=self.handler_fields.get_final_input_value() if self._is_stage_used('fields') else {},
            skip=paginate.get('skip'),
            limit=paginate.get('limit'),
        )

    def pluck_instance(self, instance):
        """ Pluck an sqlalchemy instance and make it into a dict

            This method should be used to prepare an object for JSON encoding.
            This makes sure that only the fields selected by the user get included into the result.

            :param instance: object
            :rtype: dict
        """
        if not isinstance(instance, self._model):
            raise ValueError('This ApiFeatures.pluck_instance() expects {}, but {} was given'
                             .format(self._model, type(instance)))
        self._receive_input()

        # When the `fields` stage was not used, the default projection still applies
        if self._is_stage_used('fields'):
            return self.handler_fields.pluck_instance(instance)
        return copy(self._default_fields).input({}).pluck_instance(instance)

    def __repr__(self):
        return 'ApiFeatures({})'.format(str(self._model.__name__))

    # region Stage handlers

    # This section initializes every stage handler.
    # Doing it this way enables you to override the way they are initialized.

    _HANDLER_FILTER = handlers.ApiFilter
    _HANDLER_SORT = handlers.ApiSort
    _HANDLER_FIELDS = handlers.ApiFields
    _HANDLER_PAGINATE = handlers.ApiPaginate

    # The order in which the stages are applied to the query.
    # 'paginate' goes after 'sort': LIMIT without ORDER BY gives random pages
    HANDLER_NAMES = ('filter', 'sort', 'fields', 'paginate')

    # for IDE completion
    handler_filter = None  # type: handlers.ApiFilter
    handler_sort = None  # type: handlers.ApiSort
    handler_fields = None  # type: handlers.ApiFields
    handler_paginate = None  # type: handlers.ApiPaginate

    def _init_handlers(self):
        """ Initialize every stage handler """
        for name in self.HANDLER_NAMES:
            handler_cls = getattr(self, '_HANDLER_' + name.upper())
            setattr(self, 'handler_' + name, self._init_handler(name, handler_cls))

        # A fields handler that never gets any input: the default projection
        self._default_fields = copy(self.handler_fields)

        # Check settings
        self._handler_settings.raise_if_invalid_handler_settings(self)

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler, and load its settings """
        handler_settings = self._handler_settings.get_settings(handler_name, handler_cls)
        return handler_cls(self._model, self._bags, **handler_settings)

    def _handler(self, handler_name):
        return getattr(self, 'handler_' + handler_name)

    # endregion

    # region Internals

    def _from_query(self):
        """ Get the query to work with, or initialize one """
        return self._query if self._query is not None else Query([self._model])

    def _is_stage_used(self, handler_name):
        """ Was the stage invoked, and is it enabled? """
        return handler_name in self._stages and self._handler_settings.is_handler_enabled(handler_name)

    def _receive_input(self):
        """ Give the request to every invoked stage. Only once. """
        for name in self.HANDLER_NAMES:
            handler = self._handler(name)
            if name not in self._stages:
                continue
            if not handler.input_received:
                handler.input(self._request)

            # Disabled stages complain only when the request actually uses them
            if not handler.is_input_empty():
                self._handler_settings.raise_if_not_handler_enabled(self._bags.model_name, name)

    # endregion
