"""
A Collection is the handle that controllers use to read and write documents of one model.

It wraps a model with:

* reads: lazy queries with a forced filter applied (e.g. secret tours are never found)
* populate: related objects loaded along with every document that is read (e.g. the author of a review)
* request features: `features(request)` gives an ApiFeatures over the collection
* writes: create, update by query, delete by query, with read-only and constant fields protected
* lifecycle hooks: pre/post pairs registered per MutationEvent, and run around every mutation

```python
reviews = Collection(Review, const_fields=('tour_id', 'user_id'))
reviews.on(MutationEvent.CREATED, post=lambda ssn, review, captured: ...)
reviews.seal()

review = reviews.with_session(ssn).create({'review': 'Great!', 'rating': 5, 'tour_id': 1, 'user_id': 1})
```

Hooks are registered once, at startup; `seal()` forbids registering any more of them.

#### Mutation protocol

1. `pre(ssn, target)` hooks run before the mutation.
    `target` is the new instance for CREATED, and the matching Query for the "by query" events.
    Whatever a pre hook returns is *captured*, and given to its post hook.
2. The mutation is committed.
3. `post(ssn, document, captured)` hooks run; their writes are committed.

A captured value only lives inside one call, so it never leaks to another request.

When a post hook fails, the mutation stays committed, and the caller gets a `LifecycleHookError`
with the original error as its `__cause__`.
"""

import logging
from enum import Enum
from copy import copy
from collections.abc import Mapping

from sqlalchemy.orm import joinedload

from .bag import ModelPropertyBags
from .query import ApiFeatures
from .util import Reusable, ApiFeaturesSettingsDict
from . import exc

from typing import Union, Iterable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


class MutationEvent(Enum):
    """ Mutations that lifecycle hooks can be registered for """
    CREATED = 'created'
    UPDATED_BY_QUERY = 'updated_by_query'
    DELETED_BY_QUERY = 'deleted_by_query'


class Collection:
    """ A collection of documents of one model

        This object is supposed to be initialized only once, at startup.
        For every request, bind it to a session with with_session().

        Attributes:
            model: The model
            ro_fields (frozenset[str]): Fields that can't be written. Always includes the version field.
            const_fields (frozenset[str]): Fields that can only be written on create. Always includes the primary key.
    """

    # The class to use for getting structural data from a model
    _MODEL_PROPERTY_BAGS_CLS = ModelPropertyBags

    def __init__(self, model,
                 ro_fields: Iterable[str] = None,
                 const_fields: Iterable[str] = None,
                 force_filter: Union[Mapping, Callable, None] = None,
                 version_field: Optional[str] = '_v',
                 populate: Mapping[str, Iterable[str]] = None,
                 **features_settings):
        """ Init a collection

        :param model: The model to work with
        :param ro_fields: Fields the API user can never write. E.g. computed summaries.
        :param const_fields: Fields the API user can set on create, but never change
        :param force_filter: A filtering condition for every find: a dict of {field: value},
            or a `lambda model:` that gives an expression.
            Direct writes with update_by_id() are not filtered.
        :param version_field: The internal version field, bumped on every update by query.
        :param populate: Relationships to load along with every document that is read, mapped to
            the fields of the related model to load: {'user': ('name', 'photo')}. The primary key is always there.
        :param features_settings: ApiFeatures settings. See ApiFeaturesSettingsDict.
        :raises InvalidColumnError: unknown fields
        """
        self.model = model
        self.bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(model)

        # Settings
        self.version_field = version_field
        ro_fields = self._validate_fields(ro_fields or (), 'ro_fields')
        if version_field:
            ro_fields |= self._validate_fields((version_field,), 'version_field')
        self.ro_fields = frozenset(ro_fields)
        self.const_fields = frozenset(self._validate_fields(const_fields or (), 'const_fields') |
                                      set(self.bags.pk.names))

        # force_filter
        if isinstance(force_filter, Mapping):
            self._validate_fields(force_filter.keys(), 'force_filter')
        elif force_filter is not None and not callable(force_filter):
            raise ValueError(force_filter)
        self.force_filter = force_filter

        # populate: {relationship name: (related bags, field names)}
        self._populate = {name: self._validate_populate(name, fields)
                          for name, fields in (populate or {}).items()}

        # Required fields: can't be NULL, and the database has no default for them
        self.required_fields = frozenset(name
                                         for name, column in self.bags.columns
                                         if _is_required_column(column))

        # Request features
        self._features = Reusable(ApiFeatures(model, ApiFeaturesSettingsDict(**features_settings)))

        # Hooks: {event: [(pre, post), ...]}
        self._hooks = {event: [] for event in MutationEvent}
        self._sealed = False

        # Bound session
        self._ssn = None

    def __copy__(self):
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        return result

    def __repr__(self):
        return 'Collection({})'.format(self.bags.model_name)

    def with_session(self, ssn) -> 'Collection':
        """ Get a copy bound to a session. Hooks are shared. """
        collection = copy(self)
        collection._ssn = ssn
        return collection

    # region Hooks

    def on(self, event: MutationEvent, pre: Callable = None, post: Callable = None) -> 'Collection':
        """ Register a pair of lifecycle hooks

        :param event: The mutation to hook into
        :param pre: `pre(ssn, target) -> captured`: runs before the mutation
        :param post: `post(ssn, document, captured)`: runs after the mutation is committed
        :raises RuntimeError: the collection is sealed
        """
        if self._sealed:
            raise RuntimeError('{!r} is sealed: hooks must be registered at startup'.format(self))
        if pre is None and post is None:
            raise ValueError('Provide at least one hook')
        self._hooks[MutationEvent(event)].append((pre, post))
        return self

    def seal(self) -> 'Collection':
        """ Forbid registering any more hooks """
        self._sealed = True
        self._hooks = {event: tuple(hooks) for event, hooks in self._hooks.items()}
        return self

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def _run_pre_hooks(self, event: MutationEvent, target) -> Sequence[tuple]:
        """ Run pre hooks, capture their results

        :return: [(captured, post hook)]
        """
        return [(pre(self._session(), target) if pre is not None else None, post)
                for pre, post in self._hooks[event]]

    def _run_post_hooks(self, event: MutationEvent, document, captured: Sequence[tuple]):
        """ Run post hooks, commit their writes

        :raises LifecycleHookError: a hook has failed
        """
        try:
            for value, post in captured:
                if post is not None:
                    post(self._ssn, document, value)
            self._ssn.commit()
        except Exception as e:
            self._ssn.rollback()
            logger.error('%s hook failed for %r: %s', event.name, document, e)
            raise exc.LifecycleHookError(event, document) from e
        logger.debug('%s: %d hooks done for %r', event.name, len(captured), document)

    # endregion

    # region Reads

    def find(self, *criterion, **filter_by):
        """ Find documents: a lazy Query

        :param criterion: Conditions for Query.filter()
        :param filter_by: {field: value} for Query.filter_by()
        :raises InvalidColumnError: unknown fields in filter_by
        :rtype: sqlalchemy.orm.Query
        """
        self._validate_fields(filter_by.keys(), 'find')
        query = self._apply_force_filter(self._session().query(self.model))
        if criterion:
            query = query.filter(*criterion)
        if filter_by:
            query = query.filter_by(**filter_by)
        return query

    def find_by_id(self, id):
        """ Load a document by its primary key. Gives None when not found. """
        return self._populate_query(self.find(self._pk_column == id)).populate_existing().one_or_none()

    def features(self, request=None, *criterion, **filter_by) -> ApiFeatures:
        """ Get ApiFeatures for a request, over the documents matched by `criterion` and `filter_by`

        Example:
            features = reviews.features(request.args, tour_id=tour_id)
            reviews = features.filter().sort().limit_fields().paginate().query.all()
        """
        return self._features.from_query(self._populate_query(self.find(*criterion, **filter_by))).request(request)

    def pluck_instance(self, features: ApiFeatures, document) -> dict:
        """ Make a document into a dict: the fields selected by the request, and the populated relationships

        A populated relationship is plucked when the fields that refer to it were selected.
        """
        dct = features.pluck_instance(document)
        for name, (related_bags, fields) in self._populate.items():
            if self.bags.relations.get_local_column_names(name) <= dct.keys():
                related = getattr(document, name)
                dct[name] = None if related is None else {field: getattr(related, field) for field in fields}
        return dct

    def aggregate(self, columns: Sequence, *criterion, group_by: Sequence = ()):
        """ A grouped aggregation over the documents

        Example:
            reviews.aggregate([func.count(Review.rating), func.avg(Review.rating)],
                              Review.tour_id == 1,
                              group_by=[Review.tour_id])

        :param columns: Expressions to select
        :param criterion: Conditions to match documents with
        :param group_by: Expressions to group by. They are selected first.
        :rtype: sqlalchemy.orm.Query
        """
        query = self._session().query(*group_by, *columns).select_from(self.model)
        query = self._apply_force_filter(query)
        if criterion:
            query = query.filter(*criterion)
        if group_by:
            query = query.group_by(*group_by)
        return query

    # endregion

    # region Writes

    def create(self, entity_dict: Mapping):
        """ Create a document from an entity dict

        :param entity_dict: Entity dict
        :return: Created instance
        :raises InvalidQueryError: not an object
        :raises InvalidColumnError: unknown, or read-only fields
        :raises ValidationError: a required field is missing, or a value was refused by the model
        :raises LifecycleHookError: the document was created, but a hook has failed
        """
        entity_dict = self.validate_incoming_entity_dict_fields(entity_dict, 'create')
        missing = sorted(name for name in self.required_fields if entity_dict.get(name) is None)
        if missing:
            raise exc.ValidationError(self.bags.model_name, missing[0], 'is required')
        instance = self.model(**entity_dict)

        captured = self._run_pre_hooks(MutationEvent.CREATED, instance)
        self._session().add(instance)
        self._commit()
        logger.debug('Created %r', instance)

        self._run_post_hooks(MutationEvent.CREATED, instance, captured)
        return instance

    def find_one_and_update(self, entity_dict: Mapping, *criterion, **filter_by):
        """ Update the first matching document

        :param entity_dict: Fields to update
        :return: The updated instance, or None if nothing matched
        :raises InvalidQueryError: not an object
        :raises InvalidColumnError: unknown, read-only, or constant fields
        :raises ValidationError: a value was refused by the model
        :raises LifecycleHookError: the document was updated, but a hook has failed
        """
        entity_dict = self.validate_incoming_entity_dict_fields(entity_dict, 'update')
        query = self._find_one_query(*criterion, **filter_by)

        captured = self._run_pre_hooks(MutationEvent.UPDATED_BY_QUERY, query)
        instance = self._populate_query(query).first()
        if instance is None:
            return None

        try:
            for name, value in entity_dict.items():
                setattr(instance, name, value)
        except exc.ValidationError:
            # Don't leave a half-updated instance in the session
            self._ssn.rollback()
            raise
        if self.version_field:
            setattr(instance, self.version_field, (getattr(instance, self.version_field) or 0) + 1)
        self._commit()
        logger.debug('Updated %r: %s', instance, ', '.join(entity_dict))

        self._run_post_hooks(MutationEvent.UPDATED_BY_QUERY, instance, captured)
        return instance

    def find_one_and_delete(self, *criterion, **filter_by):
        """ Delete the first matching document

        :return: The deleted instance, or None if nothing matched
        :raises LifecycleHookError: the document was deleted, but a hook has failed
        """
        query = self._find_one_query(*criterion, **filter_by)

        captured = self._run_pre_hooks(MutationEvent.DELETED_BY_QUERY, query)
        instance = self._populate_query(query).first()
        if instance is None:
            return None

        self._session().delete(instance)
        self._commit()
        logger.debug('Deleted %r', instance)

        self._run_post_hooks(MutationEvent.DELETED_BY_QUERY, instance, captured)
        return instance

    def find_by_id_and_update(self, id, entity_dict: Mapping):
        """ Update a document by its primary key. See find_one_and_update() """
        return self.find_one_and_update(entity_dict, self._pk_column == id)

    def find_by_id_and_delete(self, id):
        """ Delete a document by its primary key. See find_one_and_delete() """
        return self.find_one_and_delete(self._pk_column == id)

    def update_by_id(self, id, values: Mapping) -> int:
        """ Write fields of a document directly

        This is an internal write for maintenance code: no hooks, no field protection, no force_filter.
        The caller commits.

        :return: The number of documents updated: 0 or 1
        """
        return self._session().query(self.model) \
            .filter(self._pk_column == id) \
            .update(dict(values), synchronize_session='fetch')

    # endregion

    # region Validation

    def validate_incoming_entity_dict_fields(self, entity_dict: Mapping, action: str) -> dict:
        """ Validate the incoming entity dict

        :param action: 'create' or 'update'
        :raises InvalidQueryError: not an object
        :raises InvalidColumnError: unknown, read-only, or constant fields
        """
        if not isinstance(entity_dict, Mapping):
            raise exc.InvalidQueryError(f'{self.bags.model_name} "{action}": the value has to be an object, '
                                        f'not {type(entity_dict)}')

        # Fields that can't be written
        if action == 'create':
            protected = self.ro_fields
        elif action == 'update':
            protected = self.ro_fields | self.const_fields
        else:
            raise ValueError(action)

        # Check fields
        self._validate_fields(entity_dict.keys(), action)
        protected = sorted(set(entity_dict.keys()) & protected)
        if protected:
            raise exc.InvalidColumnError(self.bags.model_name, protected[0], action)

        return dict(entity_dict)

    def _validate_fields(self, names: Iterable[str], where: str) -> set:
        names = set(names)
        invalid = self.bags.columns.get_invalid_names(names)
        if invalid:
            raise exc.InvalidColumnError(self.bags.model_name, sorted(invalid)[0], where)
        return names

    def _validate_populate(self, name: str, fields: Iterable[str]) -> tuple:
        """ Validate a `populate` setting: a relationship, and the fields of its model

        :return: (related bags, field names with the primary key)
        :raises InvalidColumnError: unknown relationship, or unknown fields
        """
        if name not in self.bags.relations:
            raise exc.InvalidColumnError(self.bags.model_name, name, 'populate')

        related_bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(self.bags.relations.get_target_model(name))
        invalid = related_bags.columns.get_invalid_names(fields)
        if invalid:
            raise exc.InvalidColumnError(related_bags.model_name, sorted(invalid)[0], 'populate')

        return related_bags, (*sorted(related_bags.pk.names), *(f for f in fields if f not in related_bags.pk))

    # endregion

    # region Internals

    @property
    def _pk_column(self):
        """ The primary key column. Composite keys are not supported. """
        (name, column), = self.bags.pk
        return column

    def _session(self):
        if self._ssn is None:
            raise RuntimeError('{!r} is not bound to a session: use with_session()'.format(self))
        return self._ssn

    def _apply_force_filter(self, query):
        if self.force_filter is None:
            return query
        if callable(self.force_filter):
            return query.filter(self.force_filter(self.model))
        return query.filter(*(self.bags.columns[name] == value
                              for name, value in self.force_filter.items()))

    def _populate_query(self, query):
        """ Load the populated relationships along with the documents: with a JOIN, only the listed fields """
        if not self._populate:
            return query
        return query.options(*(
            joinedload(self.bags.relations[name]).load_only(*(related_bags.columns[field] for field in fields))
            for name, (related_bags, fields) in self._populate.items()
        ))

    def _find_one_query(self, *criterion, **filter_by):
        """ The query for "find one and ..." operations: the first document by primary key

            Pre hooks and the mutation itself have to see the same document.
        """
        return self.find(*criterion, **filter_by) \
            .order_by(self._pk_column.asc()) \
            .populate_existing()

    def _commit(self):
        """ Commit the mutation; roll back when it fails """
        try:
            self._ssn.commit()
        except Exception:
            self._ssn.rollback()
            raise

    # endregion


def _is_required_column(column) -> bool:
    """ Is it a column that has to be given on create: NOT NULL, and no default? """
    col = column.property.columns[0]
    return not (col.nullable or col.primary_key or
                col.default is not None or col.server_default is not None)
