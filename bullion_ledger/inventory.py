"""
Inventory collaborator

Keeps per-stock physical positions (pieces, gross and pure weight) and a
voucher-tagged log of every movement so reversals can find and remove them.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .storage import StorageInterface
from .logging_config import get_logger, log_action


logger = get_logger("bullion.inventory")


@dataclass
class InventoryMovement:
    """One physical stock movement reported by a voucher"""
    stock_id: str
    gross_weight: Decimal
    purity: Decimal
    pure_weight: Decimal
    pieces: int
    voucher_code: str
    voucher_type: str
    voucher_date: date
    party_id: Optional[str] = None


class InventoryService:
    """Physical stock positions and movement logs"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.positions_table = "inventory"
        self.logs_table = "inventory_logs"

    def update_inventory(self, movement: InventoryMovement, is_outgoing: bool,
                         actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Apply a movement to the stock position and log it.

        Returns:
            The updated position
        """
        sign = -1 if is_outgoing else 1
        with self.storage.atomic():
            position = self.storage.load(self.positions_table, movement.stock_id) or {
                'id': movement.stock_id,
                'pieces': 0,
                'gross_weight': '0',
                'pure_weight': '0'
            }
            position['pieces'] = int(position['pieces']) + sign * movement.pieces
            position['gross_weight'] = str(Decimal(position['gross_weight']) + sign * movement.gross_weight)
            position['pure_weight'] = str(Decimal(position['pure_weight']) + sign * movement.pure_weight)
            position['updated_at'] = datetime.now(timezone.utc).isoformat()
            self.storage.save(self.positions_table, movement.stock_id, position)

            log_id = str(uuid.uuid4())
            self.storage.insert(self.logs_table, log_id, {
                'id': log_id,
                'stock_id': movement.stock_id,
                'voucher_code': movement.voucher_code,
                'voucher_type': movement.voucher_type,
                'voucher_date': movement.voucher_date.isoformat(),
                'party_id': movement.party_id,
                'is_outgoing': is_outgoing,
                'pieces': movement.pieces,
                'gross_weight': str(movement.gross_weight),
                'purity': str(movement.purity),
                'pure_weight': str(movement.pure_weight),
                'created_by': actor_id,
                'created_at': datetime.now(timezone.utc).isoformat()
            })

        log_action(logger, "debug", "Inventory updated", user_id=actor_id,
                   action="inventory_out" if is_outgoing else "inventory_in",
                   resource=movement.stock_id, extra={'voucher_code': movement.voucher_code})
        return position

    def get_position(self, stock_id: str) -> Dict[str, Any]:
        position = self.storage.load(self.positions_table, stock_id)
        if not position:
            return {'id': stock_id, 'pieces': 0, 'gross_weight': Decimal('0'), 'pure_weight': Decimal('0')}
        position['gross_weight'] = Decimal(position['gross_weight'])
        position['pure_weight'] = Decimal(position['pure_weight'])
        return position

    def logs_for_voucher(self, voucher_code: str) -> List[Dict[str, Any]]:
        return self.storage.find(self.logs_table, {'voucher_code': voucher_code})

    def delete_logs_for_voucher(self, voucher_code: str) -> int:
        return self.storage.delete_where(self.logs_table, {'voucher_code': voucher_code})
