import logging

dylib_inserter_logger = logging.getLogger("dylib_inserter")
