import logging
import os
from logging.handlers import TimedRotatingFileHandler


class CustomLogger(logging.Logger):
    # Ledger-specific logging levels
    ALLOCATION_LEVEL_NUM = 21
    SHORTFALL_LEVEL_NUM = 27
    REPAIR_LEVEL_NUM = 23

    logging.addLevelName(ALLOCATION_LEVEL_NUM, "ALLOCATION")
    logging.addLevelName(SHORTFALL_LEVEL_NUM, "SHORTFALL")
    logging.addLevelName(REPAIR_LEVEL_NUM, "REPAIR")

    def allocation(self, message, *args, **kwargs):
        if self.isEnabledFor(self.ALLOCATION_LEVEL_NUM):
            self._log(self.ALLOCATION_LEVEL_NUM, f"ALLOCATION: {message}", args, **kwargs)

    def shortfall(self, message, *args, **kwargs):
        if self.isEnabledFor(self.SHORTFALL_LEVEL_NUM):
            self._log(self.SHORTFALL_LEVEL_NUM, f"SHORTFALL: {message}", args, **kwargs)

    def repair(self, message, *args, **kwargs):
        if self.isEnabledFor(self.REPAIR_LEVEL_NUM):
            self._log(self.REPAIR_LEVEL_NUM, f"REPAIR: {message}", args, **kwargs)


logging.setLoggerClass(CustomLogger)


class CustomFormatter(logging.Formatter):
    grey = "\x1b[38;21m"
    blue = "\x1b[34;21m"
    green = "\x1b[32;21m"
    red = "\x1b[31;21m"
    magenta = "\x1b[35;21m"
    orange = "\x1b[38;5;214m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + fmt + reset,
        logging.INFO: grey + fmt + reset,
        logging.WARNING: orange + fmt + reset,
        logging.ERROR: red + fmt + reset,
        logging.CRITICAL: bold_red + fmt + reset,
        CustomLogger.ALLOCATION_LEVEL_NUM: green + fmt + reset,
        CustomLogger.REPAIR_LEVEL_NUM: blue + fmt + reset,
        CustomLogger.SHORTFALL_LEVEL_NUM: magenta + fmt + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.fmt)
        formatter = logging.Formatter(log_fmt, "%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


class LoggerManager:
    _instance = None
    _is_initialized = False

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(LoggerManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config, log_dir=None):
        if not self._is_initialized:
            self._log_level = config.get('log_level', logging.INFO)
            self.log_dir = log_dir or "logs"
            self.loggers = {}
            self.setup_logging()
            self._is_initialized = True

    @classmethod
    def reset_instance(cls):
        cls._instance = None
        cls._is_initialized = False

    @property
    def log_level(self):
        return self._log_level

    def setup_logging(self):
        self.setup_logger('ledger_logger', 'ledger')
        self.setup_logger('recovery_logger', 'recovery')
        self.setup_sqlalchemy_logging(logging.WARNING)

    def setup_logger(self, logger_name, subfolder):
        log_path = os.path.join(self.log_dir, subfolder)
        os.makedirs(log_path, exist_ok=True)

        log_file = os.path.join(log_path, f"{logger_name}.log")
        logger = CustomLogger(logger_name)
        logger.setLevel(logging.DEBUG)  # file captures everything

        if logger.hasHandlers():
            logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(self._log_level)
        console_handler.setFormatter(CustomFormatter())
        logger.addHandler(console_handler)

        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=7
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(CustomFormatter.fmt))
        logger.addHandler(file_handler)

        self.loggers[logger_name] = logger
        return logger

    def get_logger(self, logger_name):
        return self.loggers.get(logger_name)

    @staticmethod
    def setup_sqlalchemy_logging(level=logging.WARNING):
        sqlalchemy_logger = logging.getLogger('sqlalchemy.engine')
        sqlalchemy_logger.setLevel(level)

        if sqlalchemy_logger.hasHandlers():
            sqlalchemy_logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(CustomFormatter())
        console_handler.setLevel(level)
        sqlalchemy_logger.addHandler(console_handler)
