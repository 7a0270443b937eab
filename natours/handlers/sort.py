"""
### Sort Stage

Sorting corresponds to the `ORDER BY` part of an SQL query.

An example of a sort request would look like this:

```
GET /api/v1/tours?sort=-ratings_average,price
```

#### Syntax

A list of field names, separated by commas or whitespace.
A field prefixed with `-` is sorted `DESC`; a plain field, or one prefixed with `+`, is sorted `ASC`.
Fields are applied in the given order.

    sort=a,-b  // -> a ASC, b DESC

A repeated `sort` key works as if the values were joined with commas.

Unknown fields are ignored. When nothing usable is left, the default sort is used: `-created_at`,
newest first.

The primary key is always appended as the last sort key, ascending:
this way, pagination is stable even when the sort keys have duplicate values.
"""

from collections import OrderedDict

from .base import ApiHandlerBase, split_list


class ApiSort(ApiHandlerBase):
    """ Request sorting

        * None, or nothing usable: the default sort
        * 'a,-b' - a comma- or whitespace- separated list of '[+-]<column>'. default direction = +1
        * ['a', '-b'] - a list of such strings

        Supports: Columns
    """

    query_object_section_name = 'sort'

    def __init__(self, model, bags, default_sort=('-created_at',), tiebreak=True, force_exclude=None):
        """ Init sorting

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param default_sort: Sort directives to use when the request gives none (or only bad ones)
        :param tiebreak: Append the primary key as the last ascending sort key
        :param force_exclude: Fields the API user can never see: they can't be sorted by
        """
        super(ApiSort, self).__init__(model, bags)

        # Settings
        self.force_exclude = frozenset(force_exclude or ())
        self.validate_properties(self.force_exclude, where='sort:force_exclude')
        self.default_sort = self._parse(split_list(default_sort or ()))
        self.validate_properties(self.default_sort.keys(), where='sort:default_sort')
        self.tiebreak = tiebreak

        # On input
        #: OrderedDict() of a sort spec: {key: +1|-1}
        self.sort_spec = None

    @staticmethod
    def _parse(tokens):
        """ Convert a list of "[+-]column" into an ordered dict. The first occurrence of a field wins. """
        spec = OrderedDict()
        for token in tokens:
            direction = -1 if token[0] == '-' else +1
            name = token[1:] if token[0] in '+-' else token
            if name and name not in spec:
                spec[name] = direction
        return spec

    def input(self, request):
        super(ApiSort, self).input(request)

        # Parse, drop unknown fields
        spec = self._parse(split_list(self.input_value))
        known = self.drop_unknown_fields(list(spec.keys()))
        spec = OrderedDict((name, spec[name]) for name in known)

        # Fall back to the default
        self.sort_spec = spec or self.default_sort.copy()
        return self

    def compile_columns(self):
        """ Get the list of ORDER BY expressions """
        columns = [
            self.bags.columns[name].desc() if d == -1 else self.bags.columns[name].asc()
            for name, d in self.sort_spec.items()
        ]

        # Primary key, unless it's already there
        if self.tiebreak:
            columns.extend(column.asc()
                           for name, column in self.bags.pk
                           if name not in self.sort_spec)
        return columns

    def alter_query(self, query):
        if not self.sort_spec and not self.tiebreak:
            return query  # short-circuit
        return query.order_by(*self.compile_columns())

    def get_final_input_value(self):
        """ Get the sort list: [(field, +1|-1)] """
        return [(name, d) for name, d in self.sort_spec.items()]
