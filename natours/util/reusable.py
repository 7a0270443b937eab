from copy import copy


class Reusable:
    """ A template wrapper: every attribute is taken from a fresh copy of the wrapped object

        Handlers and ApiFeatures accept a single request, then they are spent.
        Configure one once per model, wrap it, and every request gets its own copy:

            tour_features = Reusable(ApiFeatures(Tour))
            tour_features.from_query(q1).request(args1)  # one copy
            tour_features.from_query(q2).request(args2)  # another copy

        The template itself is never touched.
    """
    __slots__ = ('_template',)

    def __init__(self, template):
        self._template = template

    def __getattr__(self, name):
        return getattr(copy(self._template), name)

    def __repr__(self):
        return 'Reusable({!r})'.format(self._template)
