# div_functions init

from .div_functions import *
from .div_functions import __all__
