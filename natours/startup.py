""" Application startup: the database, and the collections with their hooks

```python
engine, Session = init_database('postgresql://localhost/natours')
create_all(engine)
collections = init_collections()

# in a request
ssn = Session()
tours = list_documents(collections.tours.with_session(ssn), request.args)
```
"""

import logging
from collections import namedtuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .collection import Collection
from .query import normalize_request
from .ratings import RatingsSummary
from .models import Base, Tour, User, Review

logger = logging.getLogger(__name__)


#: All collections of the app
Collections = namedtuple('Collections', ('tours', 'users', 'reviews', 'ratings'))

#: Request preset for the "top 5 cheap tours" endpoint
TOP_5_CHEAP = {
    'limit': '5',
    'sort': '-ratings_average,price',
    'fields': 'name,price,ratings_average,summary,difficulty',
}


def init_database(url='sqlite://', **engine_kwargs):
    """ Connect to the database

    Sessions do not expire instances on commit: documents returned by collections stay readable.

    :return: (engine, Session)
    """
    engine = create_engine(url, **engine_kwargs)
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, Session


def create_all(engine):
    """ Create all tables """
    Base.metadata.create_all(engine)


def init_collections() -> Collections:
    """ Init collections, register their hooks, and seal them

    Hooks are registered here, explicitly, before any collection is used.
    """
    tours = Collection(
        Tour,
        # Maintained by RatingsSummary only; the slug is made from the name
        ro_fields=('ratings_average', 'ratings_quantity', 'slug'),
        # Secret tours are never found
        force_filter=lambda model: model.secret_tour.is_not(True),
        computed_fields={'duration_weeks': ('duration',)},
    )
    users = Collection(
        User,
        ro_fields=('active',),
        # Deactivated users are never found
        force_filter=lambda model: model.active.is_not(False),
        default_sort=('name',),
        force_exclude=('password',),
    )
    reviews = Collection(
        Review,
        const_fields=('tour_id', 'user_id'),
        # The author comes along with every review
        populate={'user': ('name', 'photo')},
    )

    # Tour ratings are rounded: 4.666 -> 4.7
    ratings = RatingsSummary(reviews, tours, precision=1)
    ratings.register(reviews)

    for collection in (tours, users, reviews):
        collection.seal()
    logger.debug('Collections ready: %r, %r, %r', tours, users, reviews)

    return Collections(tours, users, reviews, ratings)


def list_documents(collection: Collection, request, *criterion, **filter_by):
    """ Load a list of documents for a list endpoint, with every request feature applied

    :param collection: Collection bound to a session
    :param request: The request mapping
    :param criterion: Base conditions, e.g. `Review.tour_id == 1`
    :param filter_by: Base conditions, e.g. `tour_id=1`
    :return: list of dicts, with the selected fields only
    """
    features = collection.features(request, *criterion, **filter_by)
    features = features.filter().sort().limit_fields().paginate()
    return [collection.pluck_instance(features, document)
            for document in features.query]


def top_5_cheap(collection: Collection, request=None):
    """ List top-5 cheap tours: the best rated, then the cheapest

    The preset overrides whatever the request says about pagination, sorting, and fields.
    """
    return list_documents(collection, {**normalize_request(request), **TOP_5_CHEAP})
