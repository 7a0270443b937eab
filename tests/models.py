from datetime import datetime

from natours.models import Base, Tour, User, Review
from natours.startup import init_database, create_all


def drop_all(engine):
    """ Drop all tables """
    Base.metadata.drop_all(engine)


def get_empty_db(url='sqlite://'):
    """ Connect, create tables """
    engine, Session = init_database(url)
    drop_all(engine)
    create_all(engine)
    return engine, Session


def tour_fields(name, price, **fields):
    """ Make an entity dict for a new tour: only the required fields """
    return dict(dict(
        name=name,
        duration=5,
        max_group_size=10,
        difficulty='easy',
        price=price,
        summary='Breathtaking views',
        image_cover='tour-cover.jpg',
    ), **fields)


def user_fields(name, email, **fields):
    """ Make an entity dict for a new user """
    return dict(dict(name=name, email=email, password='not-a-real-hash'), **fields)


def content_samples():
    """ Generate content samples: lists of entities, to be saved in order """
    # Tours: a new one every month
    yield [
        Tour(id=1, name='The Forest Hiker', duration=5, max_group_size=25, difficulty='easy',
             ratings_average=4.7, price=397, summary='Breathtaking hike through the Canadian Banff National Park',
             image_cover='tour-1-cover.jpg', created_at=datetime(2021, 1, 1)),
        Tour(id=2, name='The Sea Explorer', duration=7, max_group_size=15, difficulty='medium',
             ratings_average=4.8, price=497, summary='Exploring the jaw-dropping US east coast by foot and by boat',
             image_cover='tour-2-cover.jpg', created_at=datetime(2021, 2, 1)),
        Tour(id=3, name='The Snow Adventurer', duration=4, max_group_size=10, difficulty='difficult',
             ratings_average=4.5, price=997, summary='Exciting adventure in the snow with snowboarding and skiing',
             image_cover='tour-3-cover.jpg', created_at=datetime(2021, 3, 1)),
        Tour(id=4, name='The City Wanderer', duration=9, max_group_size=20, difficulty='easy',
             ratings_average=4.6, price=1197, summary='Living the life of Wanderlust in the US',
             image_cover='tour-4-cover.jpg', created_at=datetime(2021, 4, 1)),
        Tour(id=5, name='The Park Camper', duration=10, max_group_size=15, difficulty='medium',
             ratings_average=4.9, price=1497, summary='Breathing in Nature in America\'s most spectacular National Parks',
             image_cover='tour-5-cover.jpg', created_at=datetime(2021, 5, 1)),
        Tour(id=6, name='The Sports Lover', duration=14, max_group_size=8, difficulty='difficult',
             ratings_average=4.7, price=2997, summary='Surfing, skating, parajumping, rock climbing and more',
             image_cover='tour-6-cover.jpg', created_at=datetime(2021, 6, 1)),
        Tour(id=7, name='The Wine Taster', duration=5, max_group_size=8, difficulty='easy',
             ratings_average=4.5, price=1997, summary='Exquisite wines, scenic views, exclusive barrel tastings',
             image_cover='tour-7-cover.jpg', created_at=datetime(2021, 7, 1)),
        Tour(id=8, name='The Star Gazer', duration=9, max_group_size=8, difficulty='medium',
             ratings_average=4.4, price=2997, summary='The most remote and stunningly beautiful places for seeing the night sky',
             image_cover='tour-8-cover.jpg', created_at=datetime(2021, 8, 1)),
        Tour(id=9, name='The Northern Lights', duration=3, max_group_size=12, difficulty='easy',
             ratings_average=4.9, price=1497, summary='Enjoy the Northern Lights in one of the best places in the world',
             image_cover='tour-9-cover.jpg', created_at=datetime(2021, 9, 1)),
        # Never found
        Tour(id=10, name='The Secret Getaway', duration=2, max_group_size=4, difficulty='easy',
             ratings_average=5.0, price=99, summary='Nobody knows about it', secret_tour=True,
             image_cover='tour-10-cover.jpg', created_at=datetime(2021, 10, 1)),
    ]

    # Users
    yield [
        User(id=1, name='Leo Gillespie', email='leo@example.com', role='guide', password='hash-1'),
        User(id=2, name='Jennifer Hardy', email='jennifer@example.com', password='hash-2'),
        User(id=3, name='Kate Morrison', email='kate@example.com', password='hash-3'),
        User(id=4, name='Ayla Cornell', email='ayla@example.com', password='hash-4'),
        # Deactivated
        User(id=5, name='Zoe Pryor', email='zoe@example.com', password='hash-5', active=False),
    ]


def get_working_db_for_tests(url='sqlite://'):
    # Connect, create tables
    engine, Session = get_empty_db(url)

    # Fill DB
    ssn = Session()
    for entities_list in content_samples():
        ssn.add_all(entities_list)
        ssn.commit()
    ssn.close()

    # Done
    return engine, Session


def new_review(tour_id, user_id, rating, review='Cras mollis nisi parturient mi nec aliquet suspendisse sagittis'):
    """ Make an entity dict for a new review """
    return dict(review=review, rating=rating, tour_id=tour_id, user_id=user_id)


__all__ = ('Tour', 'User', 'Review',
           'get_empty_db', 'get_working_db_for_tests', 'content_samples',
           'tour_fields', 'user_fields', 'new_review')
