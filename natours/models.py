""" Tours, users, and reviews """

import re
import unicodedata
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Text
from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base, validates, relationship

from .exc import ValidationError


def utcnow():
    """ Naive UTC timestamp: the way it's stored """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(value):
    """ Make a lowercase URL slug: 'The Forest Hiker' -> 'the-forest-hiker' """
    value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    return re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')


def _slug_from_name(context):
    """ Column default: the slug is made from the name when the row is inserted """
    return slugify(context.get_current_parameters()['name'])


class DocumentMixin:
    """ Fields that every document has """

    #: Internal version field. Bumped on every update by query; hidden from API users by default.
    _v = Column('__v', Integer, nullable=False, default=0)

    #: Creation time. The default sort key: newest first.
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return '{}(id={!r})'.format(self.__class__.__name__, self.id)


Base = declarative_base(cls=DocumentMixin)


class Tour(Base):
    __tablename__ = 'tours'

    DIFFICULTIES = frozenset(('easy', 'medium', 'difficult'))

    id = Column(Integer, primary_key=True)
    name = Column(String(40), nullable=False, unique=True)
    # Set on create; renaming a tour keeps its slug
    slug = Column(String, nullable=False, index=True, default=_slug_from_name)
    duration = Column(Integer, nullable=False)
    max_group_size = Column(Integer, nullable=False)
    difficulty = Column(String, nullable=False)
    # Maintained by RatingsSummary. 4.5 until the first review comes in.
    ratings_average = Column(Float, nullable=False, default=4.5)
    ratings_quantity = Column(Integer, nullable=False, default=0)
    price = Column(Float, nullable=False)
    price_discount = Column(Float, nullable=True)
    summary = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_cover = Column(String, nullable=False)
    # Secret tours are never listed
    secret_tour = Column(Boolean, nullable=False, default=False)

    @property
    def duration_weeks(self):
        """ Duration in weeks. Computed, never stored: can't be filtered or sorted by """
        return self.duration / 7 if self.duration is not None else None

    @validates('name')
    def validate_name(self, key, value):
        if not value or not 10 <= len(value) <= 40:
            raise ValidationError('Tour', key, 'must have between 10 and 40 characters')
        return value

    @validates('difficulty')
    def validate_difficulty(self, key, value):
        if value not in self.DIFFICULTIES:
            raise ValidationError('Tour', key, 'is either: {}'.format(', '.join(sorted(self.DIFFICULTIES))))
        return value

    @validates('ratings_average')
    def validate_ratings_average(self, key, value):
        if value is not None and not 1 <= value <= 5:
            raise ValidationError('Tour', key, 'must be between 1.0 and 5.0')
        return value

    @validates('price', 'price_discount')
    def validate_price_discount(self, key, value):
        # Whichever of the two comes last gets checked against the other one
        price, discount = (value, self.price_discount) if key == 'price' else (self.price, value)
        if price is not None and discount is not None and discount >= price:
            raise ValidationError('Tour', 'price_discount', 'should be below the regular price')
        return value


class User(Base):
    __tablename__ = 'users'

    ROLES = frozenset(('user', 'guide', 'lead-guide', 'admin'))

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    photo = Column(String, nullable=False, default='default.jpg')
    role = Column(String, nullable=False, default='user')
    # A hash. Hashing is done by the auth layer.
    password = Column(String, nullable=False)
    # Deactivated users are hidden
    active = Column(Boolean, nullable=False, default=True)

    @validates('email')
    def validate_email(self, key, value):
        if not value or '@' not in value:
            raise ValidationError('User', key, 'please provide a valid email')
        return value.lower()

    @validates('role')
    def validate_role(self, key, value):
        if value not in self.ROLES:
            raise ValidationError('User', key, 'is either: {}'.format(', '.join(sorted(self.ROLES))))
        return value


class Review(Base):
    __tablename__ = 'reviews'
    __table_args__ = (
        # One review per user per tour
        UniqueConstraint('tour_id', 'user_id'),
    )

    id = Column(Integer, primary_key=True)
    review = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)
    tour_id = Column(Integer, ForeignKey('tours.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    #: The author. Review collections load it with every find: see `Collection(populate=)`
    user = relationship(User)

    @validates('review')
    def validate_review(self, key, value):
        if not value or not value.strip():
            raise ValidationError('Review', key, 'can not be empty')
        return value

    @validates('rating')
    def validate_rating(self, key, value):
        if value is None or not 1 <= value <= 5:
            raise ValidationError('Review', key, 'must be between 1 and 5')
        return value
