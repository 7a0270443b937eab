import re
import logging

from ..bag import ModelPropertyBags
from ..exc import InvalidColumnError

logger = logging.getLogger(__name__)


#: Request keys that control the features; never treated as filter fields
RESERVED_KEYS = frozenset(('page', 'sort', 'limit', 'fields'))

#: Separator for list-like request values: "a,-b c"
LIST_SEPARATOR = re.compile(r'[\s,]+')


def split_list(value):
    """ Split a list-like request value into tokens.

        Accepts a string ("a,-b c") or a list of such strings (repeated query string keys).
        Anything else gives an empty list: such input is malformed, and the caller falls back to its default.
    """
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [token
            for v in value if isinstance(v, str)
            for token in LIST_SEPARATOR.split(v.strip())
            if token]


class ApiHandlerBase:
    """ An implementation of a stage of ApiFeatures

        Every subclass handles a part of the request: some keys of the request mapping.
    """

    #: Name of the stage that this object is capable of handling
    query_object_section_name = None

    #: Fields the API user can never see. To this stage, they do not exist.
    force_exclude = frozenset()

    def __init__(self, model, bags):
        """ Initialize the stage handler with a model.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be configured once and then copied for every request.

        :param model: The sqlalchemy model it's being applied to
        :param bags: Model bags.
        :type bags: ModelPropertyBags

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The model to handle the request for
        self.model = model
        #: Model property bags: because we need access to the lists of its properties
        self.bags = bags

        # Has the input() method been called already?
        self.input_received = False
        self.input_value = None

    def __copy__(self):
        """ Some objects may be reused: i.e. their state before input() is called.

        Reusable handlers are implemented using the Reusable() wrapper which performs the
        automatic copying
        """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        return result

    def validate_properties(self, prop_names, bag=None, where=None):
        """ Validate the given list of property names against the columns bag

        This is only used for settings. Request input is never validated this strictly:
        unknown fields are dropped by the stages that tolerate them.

        :param prop_names: List of property names
        :param bag: A specific bag to use
        :raises InvalidColumnError
        """
        # Bag to check against
        if bag is None:
            bag = self.bags.columns

        # Validate
        invalid = bag.get_invalid_names(prop_names)
        if invalid:
            raise InvalidColumnError(self.bags.model_name,
                                     sorted(invalid)[0],
                                     where or self.query_object_section_name)

    def is_known_field(self, name):
        """ Is it a column that the API user can see? """
        return name in self.bags.columns and name not in self.force_exclude

    def drop_unknown_fields(self, names):
        """ Remove unknown column names from a list, quietly """
        known = [name for name in names if self.is_known_field(name)]
        if len(known) != len(names):
            logger.debug('%s: ignored unknown fields of %s: %s',
                         self.query_object_section_name, self.bags.model_name,
                         ', '.join(name for name in names if not self.is_known_field(name)))
        return known

    def input(self, request):
        """ Receive the request mapping.

        The purpose of this method is to receive the input, parse it, and store as a public
        property so that external tools may export its value.
        Note that validation against the database does not happen here: it's done when the query is compiled.

        :param request: The normalized request mapping
        :type request: dict
        :rtype: ApiHandlerBase
        """
        self.input_value = self.pick_input(request)  # no copying. Try not to modify it.

        # Set the flag
        self.input_received = True

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def pick_input(self, request):
        """ Pick the part of the request this stage is responsible for """
        return request.get(self.query_object_section_name)

    def is_input_empty(self):
        """ Test whether the input value was empty """
        return not self.input_value

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice. "
                           "Wrap the class into Reusable(), or copy() it!"
                           .format(self.__class__.__name__))

    def alter_query(self, query):
        """ Alter the given query and apply the stage this handler is handling

        :param query: The query to apply the stage to
        :type query: sqlalchemy.orm.Query
        :rtype: sqlalchemy.orm.Query
        """
        raise NotImplementedError()

    def alter_query_forced(self, query):
        """ Alter the query when the stage was never invoked.

        Stages that were not invoked are not applied, but some settings still have to be enforced,
        e.g. `force_exclude`. Those handlers override this method.
        """
        return query

    def get_final_input_value(self):
        """ Get the final input of the handler, the way it ends up in the QueryPlan """
        return self.input_value
