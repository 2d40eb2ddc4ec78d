from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation, localcontext

from Config import constants_core as core


class PrecisionUtils:
    """
    Fixed-point helpers for ledger quantities and money.

    Liters, totals and per-liter prices each have their own scale; every value
    the engine persists passes through one of the quantize helpers so that no
    binary float ever reaches the ledger.
    """

    _instance = None  # Singleton instance

    @classmethod
    def get_instance(cls, logger_manager=None):
        """ Ensures only one instance of PrecisionUtils is created. """
        if cls._instance is None:
            cls._instance = cls(logger_manager)
        return cls._instance

    def __init__(self, logger_manager=None, rounding=ROUND_HALF_EVEN):
        self.logger = logger_manager.get_logger('ledger_logger') if logger_manager else None
        self.rounding = rounding
        self.liters_quant = self.quant_from_places(core.LITERS_PLACES)
        self.money_quant = self.quant_from_places(core.MONEY_PLACES)
        self.price_quant = self.quant_from_places(core.PRICE_PLACES)

    @staticmethod
    def quant_from_places(decimal_places: int) -> Decimal:
        """Return a quantizer Decimal like 1e-3 for decimal_places=3."""
        if not isinstance(decimal_places, int) or decimal_places < 0:
            raise ValueError(f"decimal_places must be a non-negative int, got {decimal_places!r}")
        return Decimal('1').scaleb(-decimal_places)

    def safe_decimal(self, value, default: str = "0") -> Decimal:
        """
        Convert any scalar to Decimal without passing through binary float.

        Floats are converted via their shortest repr so 0.1 becomes Decimal('0.1').
        """
        if value is None:
            return Decimal(default)
        if isinstance(value, Decimal):
            return value
        if isinstance(value, float):
            value = repr(value)
        try:
            return Decimal(str(value).strip())
        except (TypeError, ValueError, InvalidOperation):
            if self.logger:
                self.logger.warning(f"⚠️ safe_decimal: cannot convert {value!r}; using {default}")
            return Decimal(default)

    def _quantize(self, value, quant: Decimal) -> Decimal:
        value = self.safe_decimal(value)
        if not value.is_finite():
            raise InvalidOperation(f"non-finite ledger value {value}")
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, 38)
            return value.quantize(quant, rounding=self.rounding)

    def liters(self, value) -> Decimal:
        return self._quantize(value, self.liters_quant)

    def money(self, value) -> Decimal:
        return self._quantize(value, self.money_quant)

    def price(self, value) -> Decimal:
        return self._quantize(value, self.price_quant)

    def proportional_value(self, quantity: Decimal, original_quantity: Decimal,
                           total_value: Decimal) -> Decimal:
        """
        Share of ``total_value`` that ``quantity`` represents out of ``original_quantity``.

        Multiplies before dividing so the single rounding step happens at money scale.
        """
        if original_quantity <= 0:
            return self.money(0)
        with localcontext() as ctx:
            ctx.prec = 38
            share = (quantity * total_value) / original_quantity
        return self.money(share)

    @staticmethod
    def within(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
        return abs(a - b) <= tolerance
