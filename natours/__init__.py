"""
Natours core: query features for list endpoints, and rating summaries of tours.

List endpoints get a request: a mapping of query string keys.
`ApiFeatures` turns it into an [SqlAlchemy](http://www.sqlalchemy.org/) query:

```
GET /api/v1/tours?difficulty=easy&price[lt]=1500&sort=-price,name&fields=name,price&page=2&limit=10
```

* filter: `difficulty = 'easy' AND price < 1500`
* sort: `price DESC, name ASC`
* fields: only `name` and `price` (and the primary key)
* paginate: 10 items per page, the second page

Every tour keeps a summary of its reviews: `ratings_quantity` and `ratings_average`.
`RatingsSummary` recomputes it with lifecycle hooks every time a review is created, updated, or deleted.
"""

# Exceptions that are used here and there
from .exc import *

# Information about the columns of a model
from .bag import ModelPropertyBags

# Stage handlers: that's where the request is converted to an actual SqlAlchemy query
from . import handlers

# ApiFeatures puts the handlers together
from .query import ApiFeatures, QueryPlan, normalize_request

# Collections: reads, writes, and lifecycle hooks
from .collection import Collection, MutationEvent

# Tour ratings
from .ratings import RatingsSummary

# Helpers
from .util import Reusable, ApiFeaturesSettingsDict
