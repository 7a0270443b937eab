from sqlalchemy import inspect, TypeDecorator
from sqlalchemy import Column

from typing import Set, Mapping, Iterable, Tuple, FrozenSet, Optional
from sqlalchemy.orm import ColumnProperty
from sqlalchemy.orm.attributes import InstrumentedAttribute
from sqlalchemy.sql.type_api import TypeEngine


class ModelPropertyBags:
    """ Model Property Bags is the class that lets you get information about the model's columns.

    All the meta-information about a certain Model is stored here:

    - Columns
    - Primary keys
    - Python properties (@property): computed, never stored
    - Relationships
    - Python types of the columns, used to coerce values that come from a query string

    Every request handler validates its input against these bags.
    """
    __bags_per_model_cache = {}

    @classmethod
    def for_model(cls, model) -> 'ModelPropertyBags':
        """ Get bags for a model.

        Please use this method over __init__(), because it initializes those bags only once
        """
        # Every model class has its own ModelPropertyBags, and no one inherits it.
        # Classes use an immutable `mappingproxy` for their __dict__, so we keep our own cache.
        try:
            return cls.__bags_per_model_cache[model]
        except KeyError:
            cls.__bags_per_model_cache[model] = bags = cls(model)
            return bags

    def __init__(self, model):
        """ Init bags

        :param model: Model
        :type model: sqlalchemy.orm.DeclarativeMeta
        """
        # We don't tolerate aliases here
        if inspect(model).is_aliased_class:
            raise TypeError('ModelPropertyBags does not tolerate aliased() models')

        # Get the inspector
        insp = inspect(model)

        # Initialize
        self.model = model
        self.model_name = model.__name__

        # Init bags
        self.columns = self._init_columns(model, insp)
        self.pk = self._init_primary_key(model, insp)
        self.properties = self._init_properties(model, insp)
        self.relations = self._init_relations(model, insp)

    # region: Initialize bags

    # This way, you can override the way a model is analyzed, and bags initialized

    def _init_columns(self, model, insp):
        """ Initialize: Column properties """
        return ColumnsBag(_get_model_columns(model, insp))

    def _init_primary_key(self, model, insp):
        """ Initialize: Primary key columns """
        # Mapper primary key gives Column objects; find the attribute names they are mapped to
        pk_columns = set(insp.primary_key)
        return PrimaryKeyBag({name: column
                              for name, column in self.columns
                              if column.property.columns[0] in pk_columns})

    def _init_properties(self, model, insp):
        """ Initialize: Calculated properties: @property """
        return PropertiesBag(_get_model_properties(model, insp))

    def _init_relations(self, model, insp):
        """ Initialize: Relationships """
        return RelationshipsBag(_get_model_relationships(model, insp))

    # endregion

    @property
    def all_names(self) -> Set[str]:
        """ Get the names of all properties defined for the model """
        return self.columns.names | self.properties.names | self.relations.names


class _PropertiesBagBase:
    """ Base class for Property bags

    A container that keeps meta-information on SqlAlchemy columns
    """

    def __contains__(self, name: str) -> bool:
        raise NotImplementedError

    def __getitem__(self, name: str) -> InstrumentedAttribute:
        raise NotImplementedError

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of names """
        raise NotImplementedError

    def __iter__(self) -> Iterable[Tuple[str, InstrumentedAttribute]]:
        """ Get all items """
        raise NotImplementedError

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        """ Get the names of invalid items

        Use this for validation.
        """
        return set(names) - self.names


class ColumnsBag(_PropertiesBagBase):
    """ Columns bag

    Contains meta-information about columns:
    - list of their names
    - list of all columns
    - getting a column by name: bag[column_name]
    - python type of every column: bag.python_type(column_name)
    """

    def __init__(self, columns: Mapping[str, InstrumentedAttribute]):
        """ Init columns

        :param columns: Model columns, keyed by attribute name
        """
        self._columns = columns
        self._column_names = frozenset(self._columns.keys())

        # Python types are looked up once
        self._python_types = {name: _get_column_python_type(col)
                              for name, col in self._columns.items()}

    @property
    def names(self) -> FrozenSet[str]:
        return self._column_names

    def __iter__(self) -> Iterable[Tuple[str, InstrumentedAttribute]]:
        return iter(self._columns.items())

    def __contains__(self, name: str) -> bool:
        return name in self._column_names

    def __getitem__(self, column_name: str) -> InstrumentedAttribute:
        return self._columns[column_name]

    def get(self, column_name: str, default=None) -> Optional[InstrumentedAttribute]:
        return self._columns.get(column_name, default)

    def python_type(self, column_name: str) -> Optional[type]:
        """ Get the Python type of a column, or None if the column type doesn't know it """
        return self._python_types[column_name]


class PrimaryKeyBag(ColumnsBag):
    """ Primary Key Bag

    Like ColumnBag, but with a fancy name :)
    """


class PropertiesBag(_PropertiesBagBase):
    """ Contains simple model properties (@property)

    They are computed from columns, so they are only ever plucked from a loaded instance.
    """

    def __init__(self, properties: Iterable[str]):
        self._property_names = frozenset(properties)

    @property
    def names(self) -> FrozenSet[str]:
        return self._property_names

    def __contains__(self, name: str) -> bool:
        return name in self._property_names

    def __iter__(self) -> Iterable[Tuple[str, None]]:
        return ((name, None) for name in self._property_names)


class RelationshipsBag(_PropertiesBagBase):
    """ Relationships bag

    Keeps track of relationships of a model: their target models, and the columns that refer to them.
    """

    def __init__(self, relationships: Mapping[str, InstrumentedAttribute]):
        self._relations = relationships
        self._rel_names = frozenset(relationships.keys())

    @property
    def names(self) -> FrozenSet[str]:
        return self._rel_names

    def __iter__(self) -> Iterable[Tuple[str, InstrumentedAttribute]]:
        return iter(self._relations.items())

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def __getitem__(self, name: str) -> InstrumentedAttribute:
        return self._relations[name]

    def get_target_model(self, name: str):
        """ Get the target model of a relationship """
        return self[name].property.mapper.class_

    def get_local_column_names(self, name: str) -> FrozenSet[str]:
        """ Get the names of the columns that refer to the related object: e.g. {'user_id'} """
        return frozenset(column.key for column in self[name].property.local_columns)


def _get_model_columns(model, ins):
    """ Get a dict of model columns """
    return {name: getattr(model, name)
            for name, c in ins.column_attrs.items()
            # ignore Labels and other stuff that .items() will always yield
            if isinstance(c.expression, Column)
            }


def _get_model_properties(model, ins):
    """ Get the names of model properties (calculated properties) """
    return {name
            for name in dir(model)
            if not name.startswith('_')
            and isinstance(getattr(model, name), property)}


def _get_model_relationships(model, ins):
    """ Get a dict of model relationships """
    return {name: getattr(model, name)
            for name in ins.relationships.keys()}


def _get_column_type(col: ColumnProperty) -> TypeEngine:
    """ Get column's SQL type """
    if isinstance(col.type, TypeDecorator):
        # Type decorators wrap other types, so we have to handle them carefully
        return col.type.impl
    else:
        return col.type


def _get_column_python_type(col: ColumnProperty) -> Optional[type]:
    """ Get column's Python type """
    try:
        return _get_column_type(col).python_type
    except NotImplementedError:
        return None
