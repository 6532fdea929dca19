from rudark.models.admin_user import AdminUser
from rudark.models.audit_log import AuditLog
from rudark.models.category import Category
from rudark.models.collection import CollectionPoint
from rudark.models.consignment import Consignment, ConsignmentItem
from rudark.models.order import Order, OrderItem, OrderRefund
from rudark.models.payment import PaymentWebhookEvent
from rudark.models.product import Product, ProductVariant
from rudark.models.promo import Promo
from rudark.models.shop_setting import ShopSetting
from rudark.models.stock import StockMovement, StockMovementArchive
from rudark.models.stock_audit import StockAudit, StockAuditItem
from rudark.models.store import Store
from rudark.models.transfer import StockTransfer, StockTransferItem
