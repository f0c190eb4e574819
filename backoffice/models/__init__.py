from backoffice.models.company import Company, Warehouse
from backoffice.models.product import Product
from backoffice.models.order import Order, OrderLine
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.finance import FinanceEntry
from backoffice.models.audit_log import AuditLog
