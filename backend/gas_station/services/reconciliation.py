"""Money and stock reconciliation. Pure functions of their inputs."""
from decimal import Decimal
from typing import Iterable, List, Optional

from gas_station.config import StationConfig
from gas_station.core.numbers import money, round_half_up, to_decimal
from gas_station.models.reconciliation import VarianceSeverity, VarianceStatus
from gas_station.models.transaction import PaymentType, ProductType
from gas_station.schemas.reconciliation import (
    ExpectedAmounts, MeterDiscrepancy, MoneyVariance, ReceivedAmounts,
    ReconciliationSnapshot, StockBalance,
)

ZERO = Decimal("0")

RECEIVED_CHANNELS = ("cash", "credit", "card", "transfer")

# Truck fleet accounts are billed, so they land in the credit bucket.
PAYMENT_CHANNELS: dict[PaymentType, str] = {
    PaymentType.CASH: "cash",
    PaymentType.CREDIT: "credit",
    PaymentType.BOX_TRUCK: "credit",
    PaymentType.OIL_TRUCK: "credit",
    PaymentType.CARD: "card",
    PaymentType.TRANSFER: "transfer",
}


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO
    return round_half_up(part / whole * 100, 2)


class ReconciliationEngine:
    def __init__(self, config: StationConfig):
        self.config = config

    @staticmethod
    def validate_received(received: Optional[ReceivedAmounts]) -> List[str]:
        """Every channel must be entered, zero included, and not negative."""
        errors: List[str] = []
        for channel in RECEIVED_CHANNELS:
            value = getattr(received, channel, None) if received is not None else None
            if value is None:
                errors.append(f"Received {channel} amount is required")
                continue
            try:
                amount = to_decimal(value)
            except (TypeError, ValueError):
                errors.append(f"Received {channel} amount must be a number")
                continue
            if amount < 0:
                errors.append(f"Received {channel} amount must not be negative")
        return errors

    @staticmethod
    def total_received(received: ReceivedAmounts) -> Decimal:
        return sum((to_decimal(getattr(received, c)) or ZERO for c in RECEIVED_CHANNELS), ZERO)

    def compute_money_variance(
        self, expected_fuel_amount, expected_other_amount, received: ReceivedAmounts
    ) -> MoneyVariance:
        """
        variance = received - expected. BALANCED means exactly zero; a tolerance
        band, if wanted, is the caller's decision (see variance_severity).
        """
        total_expected = to_decimal(expected_fuel_amount) + to_decimal(expected_other_amount)
        total_received = self.total_received(received)
        variance = total_received - total_expected
        if variance > 0:
            status = VarianceStatus.OVER
        elif variance < 0:
            status = VarianceStatus.SHORT
        else:
            status = VarianceStatus.BALANCED
        return MoneyVariance(
            total_expected=total_expected,
            total_received=total_received,
            variance=variance,
            variance_status=status,
            variance_percentage=_percent(variance, total_expected),
        )

    def variance_severity(self, variance, yellow=None, red=None) -> VarianceSeverity:
        yellow = to_decimal(yellow) if yellow is not None else self.config.variance_yellow_amount
        red = to_decimal(red) if red is not None else self.config.variance_red_amount
        amount = abs(to_decimal(variance))
        if amount <= yellow:
            return VarianceSeverity.GREEN
        if amount <= red:
            return VarianceSeverity.YELLOW
        return VarianceSeverity.RED

    @staticmethod
    def expected_amounts(transactions: Iterable) -> ExpectedAmounts:
        """Totals of non-voided transactions: fuel vs other goods, per channel, LPG liters."""
        result = ExpectedAmounts(by_channel={c: ZERO for c in RECEIVED_CHANNELS})
        for tx in transactions:
            if tx.is_voided:
                continue
            amount = to_decimal(tx.amount)
            if ProductType(tx.product_type) == ProductType.LPG:
                result.fuel_amount += amount
                result.fuel_liters += to_decimal(tx.liters)
            else:
                result.other_amount += amount
            channel = PAYMENT_CHANNELS[PaymentType(tx.payment_type)]
            result.by_channel[channel] += amount
            result.count += 1
        return result

    def compute_stock_balance(
        self, opening, supplies, sales, actual_closing, tolerance_percent=None
    ) -> StockBalance:
        if tolerance_percent is None:
            tolerance_percent = self.config.stock_balance_tolerance_percent
        opening = to_decimal(opening)
        supplies = to_decimal(supplies)
        sales = to_decimal(sales)
        actual_closing = to_decimal(actual_closing)
        expected_closing = opening + supplies - sales
        variance = actual_closing - expected_closing
        variance_percent = _percent(variance, expected_closing) if expected_closing > 0 else ZERO
        return StockBalance(
            opening=opening,
            supplies=supplies,
            sales=sales,
            expected_closing=expected_closing,
            actual_closing=actual_closing,
            variance=variance,
            variance_percent=variance_percent,
            is_balanced=abs(variance_percent) <= to_decimal(tolerance_percent),
        )

    def build_snapshot(
        self,
        expected_fuel_amount,
        expected_other_amount,
        received: ReceivedAmounts,
        meter_sold_liters,
        transaction_liters=None,
        meter_discrepancy: Optional[MeterDiscrepancy] = None,
    ) -> ReconciliationSnapshot:
        """Money is rounded to satang first, so status and the stored variance agree."""
        fuel = money(to_decimal(expected_fuel_amount))
        other = money(to_decimal(expected_other_amount))
        received = ReceivedAmounts(**{c: money(to_decimal(getattr(received, c))) for c in RECEIVED_CHANNELS})
        mv = self.compute_money_variance(fuel, other, received)
        return ReconciliationSnapshot(
            expected_fuel_amount=fuel,
            expected_other_amount=other,
            total_expected=mv.total_expected,
            cash_received=received.cash,
            credit_received=received.credit,
            card_received=received.card,
            transfer_received=received.transfer,
            total_received=mv.total_received,
            variance=mv.variance,
            variance_status=mv.variance_status,
            variance_percentage=mv.variance_percentage,
            severity=self.variance_severity(mv.variance),
            meter_sold_liters=to_decimal(meter_sold_liters),
            transaction_liters=to_decimal(transaction_liters),
            meter_discrepancy=meter_discrepancy,
        )
