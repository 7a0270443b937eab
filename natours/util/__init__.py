from .reusable import Reusable
from .settings_handler import ApiFeaturesSettingsHandler
from .settings_dict import ApiFeaturesSettingsDict
from .inspect import pluck_kwargs_from
