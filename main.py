import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pymongo.errors import PyMongoError

from config import load_settings
from database import serialize
from errors import StoreError, UpstreamError
from identity import Subject, bearer_token
from services import Services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        settings = load_settings()
        logging.basicConfig(level=settings.log_level.upper(),
                            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        app.state.services = Services.from_settings(settings)
    yield


app = FastAPI(title="LayerLabs Store API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix="/api")

# ---------------------- Errors ----------------------


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if isinstance(exc, UpstreamError):
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.default_message})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

# ---------------------- Dependencies ----------------------


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(authorization: Optional[str] = Header(None), svc: Services = Depends(get_services)) -> Subject:
    return svc.identity.verify(bearer_token(authorization))

# ---------------------- Models ----------------------


class Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def provided(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, by_alias=True)


class CategoryBody(Body):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    is_main: bool = False
    parent: Optional[str] = None
    order: int = 0
    subcategory_order: int = 0
    subcategories: Optional[List[Union[str, Dict[str, Any]]]] = None


class CategoryUpdateBody(Body):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    is_main: Optional[bool] = None
    parent: Optional[str] = None
    order: Optional[int] = None
    subcategory_order: Optional[int] = None
    subcategories: Optional[List[Union[str, Dict[str, Any]]]] = None


class SubcategoryBody(Body):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None


class ReorderEntry(Body):
    id: str
    order: Optional[int] = None
    subcategory_order: Optional[int] = None


class ReorderBody(Body):
    categories: List[ReorderEntry]


class ProductBody(Body):
    name: Optional[str] = None
    price: Optional[float] = None
    rating: Optional[float] = None
    reviews: Optional[int] = None
    tag: Optional[str] = None
    description: Optional[str] = None
    features: Optional[Union[List[str], str]] = None
    images: Optional[List[str]] = None
    existing_images: Optional[Union[List[str], str]] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None


class UserSyncBody(Body):
    name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoURL")


class ProfileBody(Body):
    name: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CartAddBody(Body):
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    qty: Optional[int] = 1


class CartProductBody(Body):
    product_id: str


class CartQtyBody(Body):
    product_id: str
    qty: Optional[int] = None


class PlaceOrderBody(Body):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None
    product: Any = None
    payment: Optional[str] = None


class StatusBody(Body):
    status: str


class VerifyPaymentBody(BaseModel):
    # names as returned by the Razorpay checkout handler
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class CustomOrderBody(Body):
    height: Optional[Union[float, str]] = None
    length: Optional[Union[float, str]] = None
    material: Optional[str] = None
    notes: Optional[str] = None
    images: Optional[List[Dict[str, Any]]] = None


class CustomUpdateBody(Body):
    price: Optional[float] = None
    status: Optional[str] = None
    expected_delivery: Optional[str] = None


class CustomPaymentBody(Body):
    payment: Optional[str] = None
    payment_status: Optional[str] = None


class ContactBody(Body):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None

# ---------------------- Root & Health ----------------------


@app.get("/")
def read_root():
    return {"message": "LayerLabs Store API running"}


@app.get("/test")
def test_database(svc: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = svc.db
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response

# ---------------------- Categories ----------------------


@api.get("/categories")
def list_categories(svc: Services = Depends(get_services)):
    return serialize(svc.categories.list_with_hierarchy())


@api.post("/categories", status_code=201)
def create_category(body: CategoryBody, user: Subject = Depends(current_user),
                    svc: Services = Depends(get_services)):
    doc = svc.categories.create(
        body.name,
        slug=body.slug,
        description=body.description,
        is_main=body.is_main,
        parent=body.parent,
        order=body.order,
        subcategory_order=body.subcategory_order,
        subcategories=body.subcategories,
    )
    return serialize(doc)


@api.put("/categories/reorder")
def reorder_categories(body: ReorderBody, user: Subject = Depends(current_user),
                       svc: Services = Depends(get_services)):
    return serialize(svc.categories.reorder([e.provided() for e in body.categories]))


@api.get("/categories/{category_id}")
def get_category(category_id: str, svc: Services = Depends(get_services)):
    cat = svc.categories.get(category_id)
    if cat.get("isMain"):
        cat["subcategories"] = svc.categories.children(cat["_id"])
    return serialize(cat)


@api.post("/categories/{category_id}/subcategories", status_code=201)
def create_subcategory(category_id: str, body: SubcategoryBody, user: Subject = Depends(current_user),
                       svc: Services = Depends(get_services)):
    doc = svc.categories.create_subcategory(category_id, body.name, slug=body.slug, description=body.description)
    return serialize(doc)


@api.put("/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdateBody, user: Subject = Depends(current_user),
                    svc: Services = Depends(get_services)):
    return serialize(svc.categories.update(category_id, body.provided()))


@api.delete("/categories/{category_id}")
def delete_category(category_id: str, user: Subject = Depends(current_user),
                    svc: Services = Depends(get_services)):
    svc.categories.delete(category_id)
    return {"message": "Category deleted"}

# ---------------------- Products ----------------------


@api.get("/products")
def list_products(category: Optional[str] = None, subcategory: Optional[str] = None,
                  svc: Services = Depends(get_services)):
    return serialize(svc.catalog.list_products(category=category, subcategory=subcategory))


@api.get("/products/search")
def search_products(q: Optional[str] = Query(None), svc: Services = Depends(get_services)):
    return serialize(svc.catalog.search(q))


@api.get("/products/by-category/{category_id}")
def products_by_category(category_id: str, svc: Services = Depends(get_services)):
    return serialize(svc.catalog.by_category(category_id))


@api.get("/products/{product_id}")
def get_product(product_id: str, svc: Services = Depends(get_services)):
    return serialize(svc.catalog.get(product_id))


@api.post("/products", status_code=201)
def create_product(body: ProductBody, user: Subject = Depends(current_user),
                   svc: Services = Depends(get_services)):
    return serialize(svc.catalog.create(body.provided()))


@api.put("/products/{product_id}")
def update_product(product_id: str, body: ProductBody, user: Subject = Depends(current_user),
                   svc: Services = Depends(get_services)):
    return serialize(svc.catalog.update(product_id, body.provided()))


@api.delete("/products/{product_id}")
def delete_product(product_id: str, user: Subject = Depends(current_user),
                   svc: Services = Depends(get_services)):
    svc.catalog.delete(product_id)
    return {"message": "Product deleted successfully"}

# ---------------------- Users ----------------------


@api.post("/users")
def sync_user(body: UserSyncBody, user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    doc = svc.users.sync(user.uid, name=body.name, email=body.email, photo_url=body.photo_url)
    return {"success": True, "user": serialize(doc)}


@api.get("/users/profile")
def get_profile(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return {"success": True, "user": serialize(svc.users.get_or_create(user))}


@api.post("/users/profile")
def update_profile(body: ProfileBody, user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    doc = svc.users.update_profile(user.uid, body.model_dump())
    return {"success": True, "user": serialize(doc)}

# ---------------------- Cart ----------------------


@api.get("/cart/my")
def get_cart(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return svc.cart.get(user.uid)


@api.post("/cart/add")
def add_to_cart(body: CartAddBody, user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    cart = svc.cart.add_item(user.uid, body.product_id, body.name, body.price, image=body.image, qty=body.qty)
    return {"success": True, "cart": cart}


@api.post("/cart/remove")
def remove_from_cart(body: CartProductBody, user: Subject = Depends(current_user),
                     svc: Services = Depends(get_services)):
    return {"success": True, "cart": svc.cart.remove_item(user.uid, body.product_id)}


@api.post("/cart/update")
def update_cart_qty(body: CartQtyBody, user: Subject = Depends(current_user),
                    svc: Services = Depends(get_services)):
    return {"success": True, "cart": svc.cart.update_qty(user.uid, body.product_id, body.qty)}


@api.post("/cart/clear")
def clear_cart(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return {"success": True, "cart": svc.cart.clear(user.uid)}

# ---------------------- Orders ----------------------


@api.post("/orders", status_code=201)
def place_order(body: PlaceOrderBody, user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    buyer = body.model_dump(include={"name", "email", "phone", "address", "state", "city", "pincode"})
    doc = svc.orders.place_order(user.uid, buyer, body.product, payment=body.payment)
    return serialize(doc)


@api.get("/orders")
def all_orders(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.orders.list_all())


@api.get("/orders/my")
def my_orders(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.orders.list_for_user(user.uid))


@api.patch("/orders/{order_id}")
def update_order_status(order_id: str, body: StatusBody, user: Subject = Depends(current_user),
                        svc: Services = Depends(get_services)):
    return serialize(svc.orders.set_status(order_id, body.status))


@api.post("/orders/create-gateway/{order_id}")
def create_gateway_order(order_id: str, user: Subject = Depends(current_user),
                         svc: Services = Depends(get_services)):
    return svc.orders.create_gateway_order(order_id)


@api.post("/orders/verify-payment/{order_id}")
def verify_payment(order_id: str, body: VerifyPaymentBody, user: Subject = Depends(current_user),
                   svc: Services = Depends(get_services)):
    outcome = svc.orders.verify_payment(order_id, body.razorpay_order_id, body.razorpay_payment_id,
                                        body.razorpay_signature)
    if not outcome.success:
        return JSONResponse(status_code=400, content={
            "success": False,
            "message": "Payment verification failed",
            "order": serialize({"_id": outcome.order["_id"], "paymentStatus": outcome.order["paymentStatus"]}),
        })
    return {"success": True, "message": "Payment verified", "order": serialize(outcome.order)}

# ---------------------- Customized Orders ----------------------


@api.post("/customized", status_code=201)
def create_custom_order(body: CustomOrderBody, user: Subject = Depends(current_user),
                        svc: Services = Depends(get_services)):
    doc = svc.customized.create(user.uid, height=body.height, length=body.length, material=body.material,
                                notes=body.notes, images=body.images)
    return {"success": True, "order": serialize(doc)}


@api.get("/customized")
def all_custom_orders(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.customized.list_all())


@api.get("/customized/my")
def my_custom_orders(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.customized.list_for_user(user.uid))


@api.patch("/customized/{order_id}")
def update_custom_order(order_id: str, body: CustomUpdateBody, user: Subject = Depends(current_user),
                        svc: Services = Depends(get_services)):
    doc = svc.customized.update(order_id, price=body.price, status=body.status,
                                expected_delivery=body.expected_delivery)
    return {"success": True, "order": serialize(doc)}


@api.patch("/customized/{order_id}/pay")
def confirm_custom_payment(order_id: str, body: CustomPaymentBody, user: Subject = Depends(current_user),
                           svc: Services = Depends(get_services)):
    doc = svc.customized.confirm_payment(order_id, payment=body.payment, payment_status=body.payment_status)
    return {"success": True, "order": serialize(doc)}

# ---------------------- Notifications ----------------------


@api.get("/notifications")
def list_notifications(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.notifications.list_for_user(user.uid))


@api.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, user: Subject = Depends(current_user),
                           svc: Services = Depends(get_services)):
    note = svc.notifications.mark_read(user.uid, notification_id)
    return {"success": True, "notification": serialize(note)}

# ---------------------- Contact ----------------------


@api.post("/contact", status_code=201)
def submit_contact(body: ContactBody, svc: Services = Depends(get_services)):
    doc = svc.contact.submit(body.name, body.email, body.subject, body.message)
    return {"success": True, "id": str(doc["_id"])}


@api.get("/contact")
def list_contact_messages(user: Subject = Depends(current_user), svc: Services = Depends(get_services)):
    return serialize(svc.contact.list_all())


app.include_router(api)

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
