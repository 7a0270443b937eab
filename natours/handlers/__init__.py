"""
## API features

A list endpoint gets a request: a mapping of query string keys to values.
`ApiFeatures` translates it into a query with these stages:

* `filter`: every key that isn't reserved is a condition: `price[gte]=100`
* `sort`: `sort=-ratings_average,price`
* `fields`: `fields=name,price` or `fields=-description`
* `paginate`: `page=2&limit=10`

```
GET /api/v1/tours?difficulty=easy&price[lt]=1500&sort=-price&fields=name,price&page=2&limit=10
```

The stages are applied in this fixed order, no matter in which order they're invoked:
filter, sort, fields, paginate.

Every stage is implemented by a handler class, and every handler is initialized once, with settings.
See [ApiFeaturesSettingsDict](natours/util/settings_dict.py) for the list of settings.
"""

from .base import ApiHandlerBase, RESERVED_KEYS
from .filter import ApiFilter, FilterOperator, FilterExpression
from .sort import ApiSort
from .fields import ApiFields
from .paginate import ApiPaginate
