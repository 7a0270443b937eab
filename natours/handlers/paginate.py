"""
### Paginate Stage
Pagination corresponds to the `LIMIT .. OFFSET ..` part of an SQL query.

It consists of two optional parts:

* `limit` is the number of items on a page. Default: 100
* `page` is the 1-based page number. Default: 1

```
GET /api/v1/tours?page=3&limit=10   // items 21..30
```

Missing, malformed or non-positive values fall back to the defaults.
So do values that are too large for the database: a page that is so far away that its offset overflows
falls back to the default page.
"""

from .base import ApiHandlerBase

#: The largest OFFSET or LIMIT a database can take: a signed 64-bit integer
MAX_INT = 2 ** 63 - 1


class ApiPaginate(ApiHandlerBase):
    """ Pagination: page and limit

        Handles two keys:
        * 'page': int, the 1-based page number
        * 'limit': int, the page size

        OFFSET = (page - 1) * limit
    """

    query_object_section_name = 'paginate'

    def __init__(self, model, bags, default_page=1, default_limit=100, max_items=None):
        """ Init pagination

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param default_page: The page number to use when none is given
        :param default_limit: The page size to use when none is given
        :param max_items: The maximum number of items that can be loaded with this query.
            The user can never go any higher than that.
        """
        super(ApiPaginate, self).__init__(model, bags)

        # Config
        self.default_page = default_page
        self.default_limit = default_limit
        self.max_items = max_items
        assert self.default_page > 0 and self.default_limit > 0
        assert self.max_items is None or self.max_items > 0

        # On input
        self.page = None
        self.skip = None
        self.limit = None

    def pick_input(self, request):
        return {key: request[key]
                for key in ('page', 'limit')
                if key in request}

    def input(self, request):
        super(ApiPaginate, self).input(request)

        # Parse, fall back to defaults
        page = _positive_int(self.input_value.get('page'), self.default_page)
        limit = _positive_int(self.input_value.get('limit'), self.default_limit)

        # Max limit
        if self.max_items:
            limit = min(self.max_items, limit)

        # The offset has to fit, too
        if (page - 1) * limit > MAX_INT:
            page = self.default_page

        # Done
        self.page = page
        self.limit = limit
        self.skip = (page - 1) * limit
        return self

    def alter_query(self, query):
        """ Apply offset() and limit() to the query """
        if self.skip:
            query = query.offset(self.skip)
        if self.limit:
            query = query.limit(self.limit)
        return query

    def get_final_input_value(self):
        return dict(skip=self.skip, limit=self.limit)


def _positive_int(value, default):
    """ Parse a positive integer from the request, or give the default """
    # Repeated key: the last one wins
    if isinstance(value, (list, tuple)):
        value = value[-1] if value else None

    if isinstance(value, bool):
        return default

    try:
        value = int(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return default
    return value if 0 < value <= MAX_INT else default
