"""
### Filter Stage
Filtering corresponds to the `WHERE` part of an SQL query.

List endpoints return *all* items, and leave it up to the API user to filter them.
Every request key that is not reserved (`page`, `sort`, `limit`, `fields`) is a filter.

Example of filtering:

```
GET /api/v1/tours?difficulty=easy&price[gte]=100&price[lte]=200
```

#### Field Operators
Operators are given in brackets, after the field name:

* `field=value` - equality check: `field = value`.
* `field[eq]=value` - equality check (alias).
* `field[lt]=value` - less than: `field < value`
* `field[lte]=value` - less or equal than: `field <= value`
* `field[gt]=value` - greater than: `field > value`
* `field[gte]=value` - greater or equal than: `field >= value`

When the query string is parsed into nested objects, this is the same:

```python
{'price': {'gte': '100', 'lte': '200'}}
```

All conditions are AND-ed together.
A repeated key (`difficulty=easy&difficulty=medium`) means "any of": `field IN (values)`.
A repeated key with a range operator gives one condition per value.

Only the operators listed above are recognized.
Any other bracket keyword is not an operator at all: `price[foo]=1`, or `name[$ne]=x`,
is an equality check on a field literally named `price[foo]`. Such a field does not exist,
and the query is rejected with `InvalidColumnError` when it's compiled.

#### Values
Query string values are strings. They are converted to the column's type when the query is compiled:
numbers, booleans (`true`/`false`), dates and datetimes (ISO format).
A value that can't be converted is rejected with `InvalidQueryError`.
"""

import re
import datetime
from decimal import Decimal
from enum import Enum
from collections.abc import Mapping

from sqlalchemy.sql.expression import and_

from .base import ApiHandlerBase, RESERVED_KEYS
from ..exc import InvalidQueryError, InvalidColumnError


class FilterOperator(Enum):
    """ Recognized filter operators """
    EQ = 'eq'
    GTE = 'gte'
    GT = 'gt'
    LTE = 'lte'
    LT = 'lt'

    @property
    def mongo_name(self):
        """ The operator name in a filter document: '$gte' """
        return '$' + self.value

    @classmethod
    def lookup(cls, name):
        """ Get an operator by its request name, or None if it's not an operator """
        return _OPERATORS_BY_NAME.get(name)


_OPERATORS_BY_NAME = {op.value: op for op in FilterOperator}

#: Bracket syntax: `field[op]`
_BRACKET_KEY = re.compile(r'^(?P<field>[^\[\]]+)\[(?P<op>[^\[\]]*)\]$')


# region Filter Expression Classes

def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


def coerce_value(python_type, value):
    """ Convert a request value to the column's Python type

        :raises ValueError: the value can't be converted
        :raises TypeError: the value can't be converted
    """
    # Unknown type, or already fine
    if python_type is None or value is None or isinstance(value, python_type):
        return value

    # Everything else is converted from strings only
    if not isinstance(value, str):
        # numbers are fine for numeric columns
        if python_type in (int, float, Decimal) and isinstance(value, (int, float)) and not isinstance(value, bool):
            return python_type(value)
        raise TypeError(type(value))
    value = value.strip()

    if python_type is bool:
        if value.lower() in ('true', '1', 'yes', 'on'):
            return True
        if value.lower() in ('false', '0', 'no', 'off'):
            return False
        raise ValueError(value)
    if python_type is datetime.datetime:
        return datetime.datetime.fromisoformat(value)
    if python_type is datetime.date:
        return datetime.date.fromisoformat(value)
    if python_type is Decimal:
        try:
            return Decimal(value)
        except ArithmeticError:
            raise ValueError(value)
    return python_type(value)


class FilterExpression:
    """ A single condition of the filter: (field, operator, value)

        The field is a plain name: it's only looked up when the expression is compiled.
    """

    __slots__ = ('field', 'operator', 'value')

    def __init__(self, field: str, operator: FilterOperator, value):
        self.field = field
        self.operator = operator
        self.value = value

    def __repr__(self):
        return '{} {} {!r}'.format(self.field, self.operator.mongo_name, self.value)

    def __eq__(self, other):
        return isinstance(other, FilterExpression) and \
               (self.field, self.operator, self.value) == (other.field, other.operator, other.value)

    def is_value_array(self):
        return _is_array(self.value)

    def compile_expression(self, column, python_type, operator_lambda):
        """ Compile the expression into an SQL expression

        :param column: The column to compare
        :param python_type: The type to convert the value to
        :param operator_lambda: A callable that implements the operator: (column, value) -> expression
        :raises InvalidQueryError: the value can't be converted to the column type
        """
        # An empty list: "any of nothing" is fine, but a range needs a value
        if self.is_value_array() and not self.value and self.operator is not FilterOperator.EQ:
            raise InvalidQueryError('Filter: no value for `{}[{}]`'.format(self.field, self.operator.value))

        try:
            if self.is_value_array():
                value = [coerce_value(python_type, v) for v in self.value]
            else:
                value = coerce_value(python_type, self.value)
        except (ValueError, TypeError):
            raise InvalidQueryError('Filter: invalid value {!r} for column `{}`'
                                    .format(self.value, self.field))

        return operator_lambda(column, value)


class LiteralExpression(FilterExpression):
    """ An expression that is already compiled and ready to be used

        This is used for expressions that come from the settings: e.g. callable force_filter expressions.
    """
    __slots__ = ('expression',)

    def __init__(self, expression):
        # no super()
        self.expression = expression

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, str(self.expression))

    def compile_expression(self, *args):
        return self.expression

# endregion


class ApiFilter(ApiHandlerBase):
    """ Request filter.

        Translates the non-reserved keys of a request into a list of FilterExpression,
        and compiles them into a WHERE clause.

        Supports: Columns
    """

    query_object_section_name = 'filter'

    def __init__(self, model, bags, force_filter=None, force_exclude=None):
        """ Init a filter

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param force_filter: A filtering condition that will be forcefully applied to the query.
            Can be:
                * a dict, which will become ANDed to every request ;
                * a `lambda model:`: a callable that may generate any expression Query.filter() can handle.
        :param force_exclude: Fields the API user can never see: filtering by them is filtering by an unknown field
        """
        super(ApiFilter, self).__init__(model, bags)

        self.force_exclude = frozenset(force_exclude or ())
        self.validate_properties(self.force_exclude, where='filter:force_exclude')

        # On input
        #: list[FilterExpression]
        self.expressions = None

        # Extra configuration: force_filter
        if force_filter is None:
            self.force_filter = None
        elif callable(force_filter):
            self.force_filter = force_filter
        elif isinstance(force_filter, dict):
            self.force_filter = force_filter
            # just for the sake of validation
            self.validate_properties(
                {e.field for e in self._parse_criteria(self.force_filter)},
                where='filter:force_filter')
        else:
            raise ValueError(force_filter)

    def __copy__(self):
        obj = super(ApiFilter, self).__copy__()
        obj.expressions = list(obj.expressions) if obj.expressions is not None else None
        return obj

    # Operators: lambda column, value
    # A list value under equality means "any of";
    # a list value under any other operator gives one condition per value
    _operators = {
        FilterOperator.EQ: lambda col, val: col.in_(val) if _is_array(val) else col == val,
        FilterOperator.LT: lambda col, val: and_(*(col < v for v in val)) if _is_array(val) else col < val,
        FilterOperator.LTE: lambda col, val: and_(*(col <= v for v in val)) if _is_array(val) else col <= val,
        FilterOperator.GT: lambda col, val: and_(*(col > v for v in val)) if _is_array(val) else col > val,
        FilterOperator.GTE: lambda col, val: and_(*(col >= v for v in val)) if _is_array(val) else col >= val,
    }

    def pick_input(self, request):
        return {key: value
                for key, value in request.items()
                if _field_name_of(key) not in RESERVED_KEYS}

    def input(self, request):
        super(ApiFilter, self).input(request)
        self.expressions = self._parse_criteria(self.input_value)

        # Apply force_filter
        if isinstance(self.force_filter, dict):
            self.expressions.extend(self._parse_criteria(self.force_filter))

        return self

    def _parse_criteria(self, criteria):
        """ Parse request criteria and return a list of FilterExpression

        This does not look at the columns: an unknown field is still parsed,
        and rejected when the query is compiled.

        :type criteria: dict | None
        :rtype: list[FilterExpression]
        """
        expressions = []

        for key, value in (criteria or {}).items():
            m = _BRACKET_KEY.match(key)

            # Bracket syntax: `field[op]`
            if m:
                operator = FilterOperator.lookup(m.group('op'))
                if operator is None:
                    # Not an operator. The whole key is a field name.
                    expressions.append(FilterExpression(key, FilterOperator.EQ, value))
                else:
                    expressions.append(FilterExpression(m.group('field'), operator, value))
            # Object syntax: {field: {op: value}}
            elif isinstance(value, Mapping):
                for op_name, op_value in value.items():
                    operator = FilterOperator.lookup(op_name)
                    if operator is None:
                        expressions.append(FilterExpression('{}[{}]'.format(key, op_name), FilterOperator.EQ, op_value))
                    else:
                        expressions.append(FilterExpression(key, operator, op_value))
            # Plain equality
            else:
                expressions.append(FilterExpression(key, FilterOperator.EQ, value))

        return expressions

    def compile_statement(self, expressions=None):
        """ Create an SQL statement

        :param expressions: The expressions to compile. Default: the parsed input
        :raises InvalidColumnError: unknown field
        :raises InvalidQueryError: invalid value
        :rtype: sqlalchemy.sql.elements.BooleanClauseList
        """
        conditions = []
        for e in (self.expressions if expressions is None else expressions):
            if isinstance(e, LiteralExpression):
                conditions.append(e.compile_expression())
                continue

            if not self.is_known_field(e.field):
                raise InvalidColumnError(self.bags.model_name, e.field, self.query_object_section_name)
            conditions.append(e.compile_expression(
                self.bags.columns[e.field],
                self.bags.columns.python_type(e.field),
                self._operators[e.operator],
            ))

        return and_(*conditions)

    def _compile_force_filter(self):
        """ Get the list of LiteralExpression from a callable force_filter """
        extra_filter = self.force_filter(self.model)
        if not isinstance(extra_filter, (list, tuple)):
            extra_filter = [extra_filter]
        return [LiteralExpression(e) for e in extra_filter]

    def _filter_query(self, query, expressions):
        # Callable force_filter is evaluated late: it gets the model
        if callable(self.force_filter):
            expressions = expressions + self._compile_force_filter()

        # An empty expression would put an ugly 'WHERE true' condition on the query
        if expressions:
            query = query.filter(self.compile_statement(expressions))
        return query

    def alter_query(self, query):
        return self._filter_query(query, list(self.expressions))

    def alter_query_forced(self, query):
        # Nothing from the request: only the forced conditions
        if isinstance(self.force_filter, dict):
            return self._filter_query(query, self._parse_criteria(self.force_filter))
        return self._filter_query(query, [])

    def get_final_input_value(self):
        """ Get the filter document: {field: value | {'$op': value}} """
        document = {}
        for e in self.expressions or ():
            if isinstance(e, LiteralExpression):
                continue
            if e.operator is FilterOperator.EQ and e.field not in document:
                document[e.field] = e.value
            else:
                ops = document.get(e.field)
                if not isinstance(ops, dict):
                    # an equality was there already: keep it as $eq
                    ops = document[e.field] = {} if ops is None else {'$eq': ops}
                ops[e.operator.mongo_name] = e.value
        return document


def _field_name_of(key):
    """ Get the field name of a request key: 'price[gte]' -> 'price' """
    m = _BRACKET_KEY.match(key)
    return m.group('field') if m else key
