from gapwise.consts import VERSION

__version__ = VERSION
