from typing import *
from .inspect import pluck_kwargs_from


class ApiFeaturesSettingsDict(dict):
    """ ApiFeatures settings container.

        Is only used for nice autocompletion and documentation purposes! :)

        The keyword settings in this object are just plain kwargs names
        for every handler object's __init__ method,
        which are fed to subclasses of ApiHandlerBase by ApiFeaturesSettingsHandler.

        In addition to that, there are '<handler-name>_enabled' settings,
        that can enable or disable a handler.

        Example:

            tour_features = ApiFeatures(Tour, ApiFeaturesSettingsDict(
                max_items=100,
                force_exclude=('secret_notes',),
            ))
    """

    def __init__(self,
                 # --- filter
                 force_filter = None,
                 # --- sort
                 default_sort: Iterable[str] = ('-created_at',),
                 tiebreak: bool = True,
                 # --- fields
                 default_exclude: Iterable[str] = ('_v',),
                 force_exclude: Iterable[str] = None,
                 computed_fields: Mapping[str, Iterable[str]] = None,
                 # --- paginate
                 default_page: int = 1,
                 default_limit: int = 100,
                 max_items: int = None,
                 # --- enabled_handlers?
                 filter_enabled: bool = True,
                 sort_enabled: bool = True,
                 fields_enabled: bool = True,
                 paginate_enabled: bool = True,
                 ):
        """ `ApiFeatures` has a few settings that let you configure the way queries are made,
        and fine-tune their security limitations.

        Args:
            force_filter: A filtering condition that will be forcefully applied to the query.
                Can be:
                    * a dict, which will become ANDed to every request ;
                    * a `lambda model:`: a callable that gives an expression (or a list of them)
                        for Query.filter()
            default_sort: The sort directives to use when the request gives none (or only bad ones).
                Same syntax as the `sort` request key: `-` for descending.
            tiebreak: Append the primary key as the last ascending sort key.
                This makes pagination deterministic when sort keys have duplicate values.
            default_exclude: Fields that are not selected unless explicitly asked for.
                The internal version field is hidden this way.
            force_exclude: Fields that can never be selected, e.g. `password`.
                The filter and sort stages get it too: to them, such fields do not exist.
            computed_fields: Model @property values to pluck, mapped to the columns they are computed from,
                e.g. {'duration_weeks': ('duration',)}
            default_page: The page to use when `page` is missing or invalid
            default_limit: The page size to use when `limit` is missing or invalid
            max_items: The maximum page size. Unlimited by default.
            filter_enabled: Enable the filter stage
            sort_enabled: Enable the sort stage
            fields_enabled: Enable the field selection stage
            paginate_enabled: Enable the pagination stage
        """
        super(ApiFeaturesSettingsDict, self).__init__()
        self.update({k: v
                     for k, v in locals().items()
                     if k not in {'__class__', 'self'}})
        # locals() keeps this list in sync with the signature: one place to add a setting

    def and_more(self, **settings):
        """ Copy the object and add more settings to it """
        return self.__class__(**{**self, **settings})

    @classmethod
    def pluck_from(cls, dict, skip=()):
        """ Initialize the class by plucking kwargs from a dictionary.

            This is useful when you have a dict with configuration for multiple classes,
            e.g. Collection settings, and you want to get only the keys that ApiFeatures needs.
        """
        kwargs = pluck_kwargs_from(dict,
                                   for_func=cls.__init__,
                                   skip=skip
                                   )
        return cls(**kwargs)
