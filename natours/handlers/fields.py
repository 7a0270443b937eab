"""
### Fields Stage

Field selection corresponds to the `SELECT` part of an SQL query: it chooses which fields to load.

```
GET /api/v1/tours?fields=name,duration,price
```

#### Syntax

A list of field names, separated by commas or whitespace:

* `fields=a,b` - inclusion: load only the given fields (and the primary key)
* `fields=-a,-b` - exclusion: load everything except the given fields

Inclusion and exclusion can't be mixed in one request: `fields=a,-b` is rejected with `InvalidQueryError`
when the query is compiled. Unknown fields are ignored.

When no fields are given, everything is loaded, except for the fields that are excluded by default:
the internal version field `_v`. They stay excluded in exclusion mode too: the only way to get them
is to list them in an inclusion. The primary key is always loaded.

Some fields can never be loaded: e.g. `password`. See the `force_exclude` setting.
Such fields can't be filtered or sorted by either: to the API user, they do not exist.

Computed fields (`duration_weeks`) come along with the columns they are computed from.
See the `computed_fields` setting.
"""

import logging

from sqlalchemy.orm import load_only, defer

from .base import ApiHandlerBase, split_list
from ..exc import InvalidQueryError

logger = logging.getLogger(__name__)


class ApiFields(ApiHandlerBase):
    """ Field selection (projection).

        Syntax in Python:

        * None: use default (include all but `default_exclude`)
        * 'a,b' - include only the given fields; exclude all the rest
        * '-a,-b' - exclude the given fields; include all the rest

        Other useful methods:
        * get_full_projection() will compile a full projection: a projection that contains every
            column of a model, mapped to 1 or 0, depending on whether the user wanted it.
        * __contains__() will test whether a column was requested:
            if 'title' in fields: ...
        * pluck_instance() makes a dict of the selected fields of an instance

        Supports: Columns
    """

    query_object_section_name = 'fields'

    #: Projection modes
    #: `1`  Inclusion mode: only include the listed columns
    #: `0`  Exclusion mode: exclude the given columns; include everything else
    #: `3`  Mixed mode: the user has mixed the two. The store refuses such a query.
    MODE_INCLUDE = 1
    MODE_EXCLUDE = 0
    MODE_MIXED = 3

    def __init__(self, model, bags, default_exclude=('_v',), force_exclude=None, computed_fields=None):
        """ Init field selection

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param default_exclude: A list of column names that are excluded in exclusion mode.
            You can only get these fields if you request them explicitly.
        :param force_exclude: A list of column names to exclude from the output always
        :param computed_fields: Model @property values to pluck, mapped to the columns they are computed from:
            {'duration_weeks': ('duration',)}. A computed field is plucked when all of its columns are.
        """
        super(ApiFields, self).__init__(model, bags)

        # Settings
        self.default_exclude = set(default_exclude) if default_exclude else set()
        self.force_exclude = set(force_exclude) if force_exclude else set()
        self.computed_fields = {name: frozenset(columns)
                                for name, columns in (computed_fields or {}).items()}

        # Validate
        if self.default_exclude:
            self.validate_properties(self.default_exclude, where='fields:default_exclude')
        if self.force_exclude:
            self.validate_properties(self.force_exclude, where='fields:force_exclude')
            if self.force_exclude & set(self.bags.pk.names):
                raise ValueError('fields:force_exclude: the primary key can not be excluded')
        if self.computed_fields:
            self.validate_properties(self.computed_fields.keys(), bag=self.bags.properties,
                                     where='fields:computed_fields')
            self.validate_properties(set().union(*self.computed_fields.values()),
                                     where='fields:computed_fields')

        # On input
        #: Projection mode: self.MODE_INCLUDE, self.MODE_EXCLUDE, self.MODE_MIXED
        self.mode = None
        #: Normalized projection: dict(key=0|1). Not a full projection: some keys may be missing
        self._projection = None

    def __copy__(self):
        obj = super(ApiFields, self).__copy__()
        obj._projection = obj._projection.copy() if obj._projection is not None else None
        return obj

    def input(self, request):
        super(ApiFields, self).input(request)
        self.mode, self._projection = self._input_process(split_list(self.input_value))
        return self

    def _input_process(self, tokens):
        """ input(): receive, drop unknown fields, apply the settings """
        included = self.drop_unknown_fields([t for t in tokens if t[0] != '-'])
        excluded = self.drop_unknown_fields([t[1:] for t in tokens if t[0] == '-' and t[1:]])

        # Mixed: remember it. alter_query() will complain.
        if included and excluded:
            projection = dict.fromkeys(included, 1)
            projection.update(dict.fromkeys(excluded, 0))
            return self.MODE_MIXED, projection

        # Inclusion mode
        included = [name for name in included if name not in self.force_exclude]
        if included:
            projection = dict.fromkeys(self.bags.pk.names, 1)  # the primary key is always there
            projection.update(dict.fromkeys(included, 1))
            return self.MODE_INCLUDE, projection

        # Exclusion mode: the primary key can't be excluded; fields excluded by default are always excluded
        projection = dict.fromkeys((name for name in excluded if name not in self.bags.pk), 0)
        projection.update(dict.fromkeys(self.default_exclude, 0))
        projection.update(dict.fromkeys(self.force_exclude, 0))
        return self.MODE_EXCLUDE, projection

    def compile_options(self):
        """ Get the list of loader options for the Query: load_only(), or defer() """
        if self.mode == self.MODE_MIXED:
            raise InvalidQueryError('{}: cannot mix inclusion and exclusion'.format(self.query_object_section_name))

        if self.mode == self.MODE_INCLUDE:
            return [load_only(*(self.bags.columns[name] for name in self._projection))]

        # Primary keys are always loaded
        return [defer(self.bags.columns[name])
                for name in self._projection
                if name not in self.bags.pk]

    def alter_query(self, query):
        options = self.compile_options()
        return query.options(*options) if options else query

    def alter_query_forced(self, query):
        if not self.force_exclude:
            return query
        return query.options(*(defer(self.bags.columns[name]) for name in self.force_exclude))

    @property
    def projection(self):
        """ Get the current projection as a dict: {key: 1} in inclusion mode, {key: 0} in exclusion mode """
        return self._projection.copy()

    def get_full_projection(self):
        """ Generate a full, normalized projection for a model.

        This projection will contain all columns of a model, with 1-s and 0-s given for every field.

        :rtype: dict
        """
        return {name: int(name in self)
                for name in self.bags.columns.names}

    def get_final_input_value(self):
        return self.projection

    def __contains__(self, name):
        """ Test whether a column name is included into projection (by name)

        :type name: str
        """
        if self.mode == self.MODE_EXCLUDE:
            return name not in self._projection
        return self._projection.get(name) == 1

    def pluck_instance(self, instance):
        """ Pluck an sqlalchemy instance and make it into a dict

            This method should be used to prepare an object for JSON encoding.
            It makes sure that only the fields selected by the user get included into the result,
            and *not* the fields that your code may have loaded.
            Computed fields are added when all the columns they are computed from are there.

            :param instance: object
            :rtype: dict
        """
        projection = self.get_full_projection()
        document = {key: getattr(instance, key)
                    for key, include in projection.items()
                    if include}
        document.update({name: getattr(instance, name)
                         for name, columns in self.computed_fields.items()
                         if all(projection[column] for column in columns)})
        return document
