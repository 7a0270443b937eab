import unittest

from sqlalchemy.orm import Query

from natours import ApiFeatures, ApiFeaturesSettingsDict, QueryPlan, Reusable, normalize_request
from natours.exc import InvalidColumnError, InvalidQueryError, DisabledError
from natours.startup import init_collections, list_documents, top_5_cheap
from . import models
from .models import Tour, User
from .util import TestQueryStringsMixin, QueryLogger, ExpectedQueryCounter, q2sql


class MultiDict:
    """ A multi-value mapping, like the ones web frameworks give for query strings """

    def __init__(self, pairs):
        self._pairs = list(pairs)

    def keys(self):
        return list(dict.fromkeys(k for k, v in self._pairs))

    def getlist(self, key):
        return [v for k, v in self._pairs if k == key]


class FeaturesPlanTest(TestQueryStringsMixin, unittest.TestCase):
    """ Test ApiFeatures: plans and queries, no database """

    maxDiff = None

    def test_normalize_request(self):
        self.assertEqual(normalize_request(None), {})
        self.assertEqual(normalize_request({'sort': ['price'], 'difficulty': ['easy', 'medium']}),
                         {'sort': 'price', 'difficulty': ['easy', 'medium']})
        self.assertEqual(normalize_request(MultiDict([('sort', 'price'), ('price[gte]', '1'), ('price[gte]', '2')])),
                         {'sort': 'price', 'price[gte]': ['1', '2']})
        self.assertEqual(normalize_request({'price': {'gte': '100'}}), {'price': {'gte': '100'}})

        with self.assertRaises(InvalidQueryError):
            normalize_request('sort=price')

    def test_plan_defaults(self):
        features = ApiFeatures(Tour).request({})

        # Nothing invoked: empty plan
        self.assertEqual(features.plan, QueryPlan(filter={}, sort=[], projection={}, skip=None, limit=None))

        # Everything invoked: the defaults
        features = ApiFeatures(Tour).request({}).filter().sort().limit_fields().paginate()
        self.assertEqual(features.plan, QueryPlan(
            filter={},
            sort=[('created_at', -1)],
            projection={'_v': 0},
            skip=0,
            limit=100,
        ))

        self.assertQuery(features.query,
                         'FROM tours',
                         'ORDER BY tours.created_at DESC, tours.id ASC',
                         'LIMIT 100')
        self.assertNotIn('WHERE', q2sql(features.query))
        self.assertNotIn('tours.__v', q2sql(features.query))

    def test_plan(self):
        features = ApiFeatures(Tour).request({
            'difficulty': 'easy',
            'price[gte]': '100',
            'price[lte]': '200',
            'sort': 'ratings_average,-price',
            'fields': 'name,price',
            'page': '2',
            'limit': '10',
        }).filter().sort().limit_fields().paginate()

        self.assertEqual(features.plan, QueryPlan(
            filter={'difficulty': 'easy', 'price': {'$gte': '100', '$lte': '200'}},
            sort=[('ratings_average', +1), ('price', -1)],
            projection={'id': 1, 'name': 1, 'price': 1},
            skip=10,
            limit=10,
        ))

        qs = self.assertQuery(features.query,
                              'WHERE tours.difficulty = easy AND tours.price >= 100.0 AND tours.price <= 200.0',
                              'ORDER BY tours.ratings_average ASC, tours.price DESC, tours.id ASC',
                              'LIMIT 10 OFFSET 10')
        self.assertSelectedColumns(qs, 'tours.id', 'tours.name', 'tours.price')

    def test_stage_order(self):
        request = {'difficulty': 'easy', 'sort': '-price', 'fields': 'name', 'page': '3', 'limit': '5'}

        # The order in which stages are invoked does not matter
        q1 = ApiFeatures(Tour).request(request).filter().sort().limit_fields().paginate().query
        q2 = ApiFeatures(Tour).request(request).paginate().limit_fields().sort().filter().query
        self.assertEqual(q2sql(q1), q2sql(q2))

        # Stages that were not invoked are not applied
        features = ApiFeatures(Tour).request(request).sort()
        qs = q2sql(features.query)
        self.assertIn('ORDER BY tours.price DESC', qs)
        self.assertNotIn('WHERE', qs)
        self.assertNotIn('LIMIT', qs)
        self.assertEqual(features.plan.filter, {})
        self.assertEqual(features.plan.limit, None)

        # Invoking a stage twice is the same as invoking it once
        self.assertEqual(q2sql(ApiFeatures(Tour).request(request).sort().sort().query), qs)

    def test_errors(self):
        # Stage methods never raise; errors come from the query
        features = ApiFeatures(Tour).request({'price[foo]': '1'}).filter()
        self.assertEqual(features.plan.filter, {'price[foo]': '1'})
        with self.assertRaises(InvalidColumnError):
            features.query

        features = ApiFeatures(Tour).request({'price': 'cheap'}).filter()
        with self.assertRaises(InvalidQueryError):
            features.query

        features = ApiFeatures(Tour).request({'fields': 'name,-price'}).limit_fields()
        with self.assertRaises(InvalidQueryError):
            features.query

        # Malformed optional input is defaulted
        features = ApiFeatures(Tour).request({'sort': ',', 'page': 'x', 'limit': '-1', 'fields': 'nope'}) \
            .sort().limit_fields().paginate()
        self.assertEqual(features.plan, QueryPlan(filter={}, sort=[('created_at', -1)], projection={'_v': 0},
                                                  skip=0, limit=100))

        # Not a mapping
        with self.assertRaises(InvalidQueryError):
            ApiFeatures(Tour).request(['sort', 'price'])

    def test_settings(self):
        # === Test: settings are given to the handlers
        features = ApiFeatures(User, ApiFeaturesSettingsDict(
            default_sort=('name',),
            force_exclude=('password',),
            max_items=5,
        )).request({'limit': '10'}).sort().paginate()
        self.assertEqual(features.plan.sort, [('name', +1)])
        self.assertEqual(features.plan.limit, 5)
        # force_exclude works even when the stage is not invoked
        self.assertNotIn('users.password', q2sql(features.query))

        # === Test: typos
        with self.assertRaises(KeyError):
            ApiFeatures(Tour, dict(max_itemz=5))

        # === Test: disabled stage
        make_features = lambda request: ApiFeatures(Tour, dict(sort_enabled=False)).request(request).filter().sort()

        # Not used: fine, and not applied
        features = make_features({'difficulty': 'easy'})
        self.assertNotIn('ORDER BY', q2sql(features.query))
        self.assertEqual(features.plan.sort, [])

        # Used: error
        with self.assertRaises(DisabledError):
            make_features({'sort': 'price'}).query
        with self.assertRaises(DisabledError):
            make_features({'sort': 'price'}).plan

    def test_reusable(self):
        tour_features = Reusable(ApiFeatures(Tour))

        f1 = tour_features.from_query(Query([Tour])).request({'sort': 'price'}).sort()
        f2 = tour_features.request({'sort': 'name'}).sort()
        f3 = tour_features.request({}).filter()

        self.assertEqual(f1.plan.sort, [('price', +1)])
        self.assertEqual(f2.plan.sort, [('name', +1)])
        self.assertEqual(f3.plan.sort, [])

        # A request can only be given once: the handlers have received it
        with self.assertRaises(RuntimeError):
            f1.request({'sort': 'name'})

    def test_from_query(self):
        # The base query is kept: e.g. reviews of a single tour
        features = ApiFeatures(Tour).from_query(Query([Tour]).filter(Tour.duration > 3)) \
            .request({'difficulty': 'easy'}).filter()
        self.assertQuery(features.query, 'WHERE tours.duration > 3 AND tours.difficulty = easy')
        self.assertEqual(q2sql(features.end()), q2sql(features.query))


class FeaturesQueryTest(unittest.TestCase):
    """ Test ApiFeatures: run queries """

    maxDiff = None

    @classmethod
    def setUpClass(cls):
        # Init db
        cls.engine, cls.Session = models.get_working_db_for_tests()
        cls.collections = init_collections()

    def setUp(self):
        self.ssn = self.Session()
        self.tours = self.collections.tours.with_session(self.ssn)
        self.users = self.collections.users.with_session(self.ssn)

    def tearDown(self):
        self.ssn.close()

    def ids(self, request, collection=None):
        """ Run a request, get the ids """
        features = (collection or self.tours).features(request).filter().sort().limit_fields().paginate()
        return [document.id for document in features.query]

    def test_filter(self):
        # Secret tours are never found
        self.assertEqual(self.ids({}), [9, 8, 7, 6, 5, 4, 3, 2, 1])
        self.assertEqual(self.ids({'secret_tour': 'true'}), [])

        # Filters
        self.assertEqual(self.ids({'difficulty': 'easy'}), [9, 7, 4, 1])
        self.assertEqual(self.ids({'difficulty': ['difficult', 'medium']}), [8, 6, 5, 3, 2])
        self.assertEqual(self.ids({'price[gte]': '1000', 'price[lte]': '2000', 'sort': 'price'}), [4, 5, 9, 7])
        self.assertEqual(self.ids({'price': {'lt': '500'}}), [2, 1])
        self.assertEqual(self.ids({'duration[gt]': '5', 'difficulty': 'easy'}), [4])
        self.assertEqual(self.ids({'created_at[lt]': '2021-03-01'}), [2, 1])
        self.assertEqual(self.ids({'name': 'The Wine Taster'}), [7])

    def test_sort(self):
        self.assertEqual(self.ids({'sort': 'price'}), [1, 2, 3, 4, 5, 9, 7, 6, 8])
        # Duplicate values: the primary key breaks the tie
        self.assertEqual(self.ids({'sort': '-price'}), [6, 8, 7, 5, 9, 4, 3, 2, 1])
        self.assertEqual(self.ids({'sort': '-ratings_average,price'}), [5, 9, 2, 1, 6, 4, 3, 7, 8])
        self.assertEqual(self.ids({'sort': 'difficulty,-duration'}), [6, 3, 4, 1, 7, 9, 5, 8, 2])

    def test_with_session(self):
        # Bare ApiFeatures: no base filter, secret tours included
        features = ApiFeatures(Tour).with_session(self.ssn) \
            .request({'difficulty': 'easy', 'sort': 'price'}).filter().sort()
        self.assertEqual([tour.id for tour in features.query], [10, 1, 4, 9, 7])

    def test_paginate(self):
        self.assertEqual(self.ids({'sort': 'price', 'limit': '3'}), [1, 2, 3])
        self.assertEqual(self.ids({'sort': 'price', 'page': '2', 'limit': '3'}), [4, 5, 9])
        self.assertEqual(self.ids({'sort': 'price', 'page': '4', 'limit': '3'}), [])

        # Pages do not overlap, and give everything
        pages = [self.ids({'sort': '-price', 'page': str(page), 'limit': '2'}) for page in range(1, 6)]
        self.assertEqual(sum(pages, []), self.ids({'sort': '-price'}))

        # Numbers too large to be an offset: the defaults
        self.assertEqual(self.ids({'sort': 'price', 'page': '1' + '0' * 20}), self.ids({'sort': 'price'}))
        self.assertEqual(self.ids({'sort': 'price', 'page': str(2 ** 62), 'limit': '3'}), [1, 2, 3])

    def test_fields(self):
        request = {'fields': 'name,price', 'sort': 'price', 'limit': '1'}
        self.assertEqual(list_documents(self.tours, request),
                         [{'id': 1, 'name': 'The Forest Hiker', 'price': 397}])

        # Default: everything but `_v`
        document, = list_documents(self.tours, {'limit': '1'})
        self.assertEqual(document['id'], 9)
        self.assertIn('summary', document)
        self.assertNotIn('_v', document)

        # Exclusion: `_v` stays excluded
        document, = list_documents(self.tours, {'limit': '1', 'fields': '-summary,-description'})
        self.assertNotIn('summary', document)
        self.assertNotIn('_v', document)

        # The primary key can't be excluded
        document, = list_documents(self.tours, {'limit': '1', 'fields': '-id'})
        self.assertEqual(document['id'], 9)
        self.assertNotIn('_v', document)

        # Duration in weeks comes along with the duration
        for document in list_documents(self.tours, {}):
            self.assertEqual(document['duration_weeks'], document['duration'] / 7)
        document, = list_documents(self.tours, {'limit': '1', 'fields': 'name'})
        self.assertEqual(document, {'id': 9, 'name': document['name']})
        document, = list_documents(self.tours, {'limit': '1', 'fields': '-duration'})
        self.assertNotIn('duration_weeks', document)

        # Passwords are never loaded
        for request in ({}, {'fields': 'name,password'}, {'fields': 'password'}, {'fields': '-name'}):
            for document in list_documents(self.users, request):
                self.assertNotIn('password', document)

    def test_users(self):
        # Deactivated users are never found; sorted by name
        self.assertEqual([user['name'] for user in list_documents(self.users, {'fields': 'name'})],
                         ['Ayla Cornell', 'Jennifer Hardy', 'Kate Morrison', 'Leo Gillespie'])
        self.assertEqual(self.ids({'role': 'guide'}, collection=self.users), [1])

        # Passwords can't be filtered or sorted by
        with self.assertRaises(InvalidColumnError) as e:
            list_documents(self.users, {'password[gte]': 'a'})
        self.assertEqual(e.exception.column_name, 'password')
        self.assertEqual(self.ids({'sort': 'password'}, collection=self.users), [4, 2, 3, 1])

    def test_base_filter(self):
        # features() over the documents matched by base conditions
        features = self.tours.features({'sort': 'price'}, Tour.duration >= 9).filter().sort()
        self.assertEqual([tour.id for tour in features.query], [4, 5, 6, 8])

        features = self.tours.features({'difficulty': 'easy'}, duration=5).filter().sort()
        self.assertEqual([tour.id for tour in features.query], [7, 1])

    def test_multidict(self):
        request = MultiDict([('difficulty', 'easy'), ('difficulty', 'medium'), ('sort', 'price'), ('limit', '2')])
        self.assertEqual(self.ids(request), [1, 2])

    def test_top_5_cheap(self):
        documents = top_5_cheap(self.tours)
        self.assertEqual([tour['id'] for tour in documents], [5, 9, 2, 1, 6])
        self.assertEqual(set(documents[0]), {'id', 'name', 'price', 'ratings_average', 'summary', 'difficulty'})

        # The preset wins; filters still apply
        documents = top_5_cheap(self.tours, {'limit': '100', 'difficulty': 'easy', 'sort': 'price'})
        self.assertEqual([tour['id'] for tour in documents], [9, 1, 4, 7])

    def test_lazy(self):
        # Nothing is loaded until the query is iterated
        with ExpectedQueryCounter(self.engine, 0, 'Building a query must not load anything'):
            features = self.tours.features({'difficulty': 'easy', 'sort': 'price'}).filter().sort()
            query = features.query
            features.plan

        # One query
        with QueryLogger(self.engine) as ql:
            self.assertEqual([tour.id for tour in query], [1, 4, 9, 7])
        self.assertEqual(len(ql), 1)
        self.assertIn('ORDER BY tours.price ASC, tours.id ASC', ql[0])
