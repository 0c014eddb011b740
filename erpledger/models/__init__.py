from erpledger.models.user import User
from erpledger.models.company import Company
from erpledger.models.company_membership import CompanyMembership
from erpledger.models.audit_log import AuditLog
from erpledger.models.catalog import Category, Product, Warehouse
from erpledger.models.partner import Customer, Supplier
from erpledger.models.stock import StockLevel, StockMovement
from erpledger.models.order import Order, OrderItem
from erpledger.models.invoice import Invoice
from erpledger.models.payment import Payment
