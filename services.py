from dataclasses import dataclass

from pymongo.database import Database

from cart import CartService
from catalog import Catalog
from categories import CategoryTree
from config import Settings
from contact import ContactService
from customized import CustomOrderService
from database import connect, ensure_indexes
from gateway import RazorpayGateway
from identity import FirebaseIdentity
from mailer import BrevoMailer
from notifications import NotificationService
from orders import OrderService
from storage import FirebaseObjectStore
from users import UserService


@dataclass
class Services:
    settings: Settings
    db: Database
    identity: object
    categories: CategoryTree
    catalog: Catalog
    users: UserService
    cart: CartService
    orders: OrderService
    customized: CustomOrderService
    notifications: NotificationService
    contact: ContactService

    @classmethod
    def build(cls, settings: Settings, db: Database, identity, store, mailer, gateway) -> "Services":
        """Wire every service from one settings object and the four external collaborators."""
        categories = CategoryTree(db)
        catalog = Catalog(db, categories, store)
        categories.in_use = catalog.is_category_referenced
        users = UserService(db, default_state=settings.default_state)
        notifications = NotificationService(db)
        return cls(
            settings=settings,
            db=db,
            identity=identity,
            categories=categories,
            catalog=catalog,
            users=users,
            cart=CartService(db),
            orders=OrderService(db, catalog, gateway, notifications, mailer, settings),
            customized=CustomOrderService(db, users, store, notifications, mailer, settings),
            notifications=notifications,
            contact=ContactService(db),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        db = connect(settings)
        ensure_indexes(db)
        return cls.build(
            settings,
            db,
            identity=FirebaseIdentity(settings),
            store=FirebaseObjectStore(settings),
            mailer=BrevoMailer(settings),
            gateway=RazorpayGateway(settings),
        )
