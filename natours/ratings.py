"""
RatingsSummary keeps the rating summary of a parent document (a tour) in sync with its child documents (reviews).

A tour has two summary fields:

* `ratings_quantity`: the number of reviews
* `ratings_average`: the mean rating of its reviews

Both are recomputed from scratch, with a grouped aggregation, every time a review is created,
updated, or deleted. There's no incremental bookkeeping: a recompute is idempotent,
and the last recompute wins.

When the last review is gone, the summary is `(0, 0.0)`.
Note that this is not the same as the default `4.5` that a tour has before its first review.

```python
ratings = RatingsSummary(reviews, tours, precision=1)
ratings.register(reviews)
reviews.seal()
```
"""

import logging

from sqlalchemy import func

from .collection import Collection, MutationEvent
from . import exc

from typing import Tuple, Optional

logger = logging.getLogger(__name__)


class RatingsSummary:
    """ Maintains count & average of child values on a parent document """

    def __init__(self, children: Collection, parents: Collection,
                 parent_ref: str = 'tour_id',
                 value: str = 'rating',
                 count_field: str = 'ratings_quantity',
                 average_field: str = 'ratings_average',
                 empty_average: float = 0.0,
                 precision: Optional[int] = None):
        """ Init a summary

        :param children: The collection of children, e.g. reviews
        :param parents: The collection of parents, e.g. tours
        :param parent_ref: Child field that references the parent's primary key
        :param value: Child field to average
        :param count_field: Parent field for the number of children
        :param average_field: Parent field for the average
        :param empty_average: The average to write when there are no children
        :param precision: Round the average to this number of decimal places. None: don't round.
        :raises InvalidColumnError: unknown fields
        """
        self.children = children
        self.parents = parents
        self.parent_ref = parent_ref
        self.value = value
        self.count_field = count_field
        self.average_field = average_field
        self.empty_average = empty_average
        self.precision = precision

        # Validate
        for bags, names in ((children.bags, (parent_ref, value)),
                            (parents.bags, (count_field, average_field))):
            invalid = bags.columns.get_invalid_names(names)
            if invalid:
                raise exc.InvalidColumnError(bags.model_name, sorted(invalid)[0], 'ratings summary')

        self._parent_ref_column = children.bags.columns[parent_ref]
        self._value_column = children.bags.columns[value]

    def __repr__(self):
        return '{}({}.{} -> {})'.format(self.__class__.__name__,
                                        self.children.bags.model_name, self.value, self.parents.bags.model_name)

    def register(self, collection: Collection) -> Collection:
        """ Register lifecycle hooks on the children collection

        * CREATED: recompute for the new document's parent
        * UPDATED_BY_QUERY, DELETED_BY_QUERY: capture the parent reference of the matching document
            before the mutation, recompute for it after the mutation
        """
        collection.on(MutationEvent.CREATED, post=self._recompute_for_document)
        collection.on(MutationEvent.UPDATED_BY_QUERY, pre=self._capture_parent_ref, post=self._recompute_for_captured)
        collection.on(MutationEvent.DELETED_BY_QUERY, pre=self._capture_parent_ref, post=self._recompute_for_captured)
        return collection

    def recompute(self, ssn, parent_id) -> Tuple[int, float]:
        """ Recompute the summary of one parent, and write it

        The write is not committed: the caller owns the transaction.

        :param ssn: Session
        :param parent_id: Parent primary key
        :return: (count, average)
        :raises ParentNotFoundError: the parent does not exist
        """
        row = self.children.with_session(ssn).aggregate(
            [func.count(self._value_column), func.avg(self._value_column)],
            self._parent_ref_column == parent_id,
            group_by=[self._parent_ref_column],
        ).first()

        # No group: no children
        if row is None:
            count, average = 0, self.empty_average
        else:
            _, count, average = row
            average = float(average)
            if self.precision is not None:
                average = round(average, self.precision)

        n = self.parents.with_session(ssn).update_by_id(parent_id, {
            self.count_field: count,
            self.average_field: average,
        })
        if not n:
            raise exc.ParentNotFoundError(self.parents.bags.model_name, parent_id)

        logger.debug('%r: #%s has %d ratings, average %s', self, parent_id, count, average)
        return count, average

    # region Hooks

    def _capture_parent_ref(self, ssn, query):
        """ Pre hook: get the parent reference of the document that's about to be mutated """
        row = query.with_entities(self._parent_ref_column).first()
        return row[0] if row is not None else None

    def _recompute_for_captured(self, ssn, document, parent_id):
        """ Post hook: recompute for the captured parent """
        if parent_id is None:
            return
        self.recompute(ssn, parent_id)

    def _recompute_for_document(self, ssn, document, captured):
        """ Post hook: recompute for the parent of a new document """
        self.recompute(ssn, getattr(document, self.parent_ref))

    # endregion
