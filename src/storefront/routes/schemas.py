from marshmallow import Schema, fields, validate, validates, validates_schema, ValidationError

from storefront.models.order import DELIVERY_TYPES, ORDER_STATUSES, PAYMENT_METHODS
from storefront.models.product import slugify
from storefront.models.user import USER_ROLES


class RegisterSchema(Schema):
    first_name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    last_name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=6, max=128))
    phone_number = fields.Str(load_default=None, validate=validate.Length(max=30))


class LoginSchema(Schema):
    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True)


class CategorySchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    description = fields.Str(load_default="")
    image = fields.Str(load_default=None, allow_none=True)
    parent_id = fields.Int(load_default=None, allow_none=True, strict=True)
    is_active = fields.Bool()
    sort_order = fields.Int(strict=True)

    @validates("name")
    def validate_name(self, value, **kwargs):
        if not slugify(value):
            raise ValidationError("Name must contain at least one letter or digit.")


class ImageSchema(Schema):
    url = fields.Str(required=True)
    is_main = fields.Bool(load_default=False)


class SpecificationsSchema(Schema):
    weight = fields.Str()
    dimensions = fields.Str()
    ingredients = fields.List(fields.Str())
    usage = fields.Str()
    warnings = fields.List(fields.Str())
    storage_instructions = fields.Str()


class ProductSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    description = fields.Str(required=True)
    price_cents = fields.Int(required=True, strict=True, validate=validate.Range(min=0))
    category_id = fields.Int(required=True, strict=True)
    brand = fields.Str(required=True)
    images = fields.List(fields.Nested(ImageSchema), load_default=list)
    stock = fields.Int(required=True, strict=True, validate=validate.Range(min=0))
    is_active = fields.Bool(load_default=True)
    specifications = fields.Nested(SpecificationsSchema, load_default=dict)
    tags = fields.List(fields.Str(), load_default=list)
    discount_percentage = fields.Float(allow_none=True, validate=validate.Range(min=0, max=100))
    discount_starts_at = fields.AwareDateTime(allow_none=True)
    discount_ends_at = fields.AwareDateTime(allow_none=True)

    @validates_schema
    def validate_discount_window(self, data, **kwargs):
        starts, ends = data.get("discount_starts_at"), data.get("discount_ends_at")
        if starts and ends and ends < starts:
            raise ValidationError("Discount must end after it starts.", "discount_ends_at")


class AddCartItemSchema(Schema):
    product_id = fields.Int(required=True, strict=True)
    quantity = fields.Int(load_default=1, strict=True, validate=validate.Range(min=1, max=99))


class UpdateCartItemSchema(Schema):
    quantity = fields.Int(required=True, strict=True, validate=validate.Range(min=0, max=99))


class AddressSchema(Schema):
    street = fields.Str(required=True)
    city = fields.Str(required=True)
    state = fields.Str(required=True)
    postal_code = fields.Str(required=True)
    country = fields.Str(load_default="Tunisia")


class CreateOrderSchema(Schema):
    delivery_type = fields.Str(load_default="pickup", validate=validate.OneOf(DELIVERY_TYPES))
    payment_method = fields.Str(load_default="cash_on_delivery", validate=validate.OneOf(PAYMENT_METHODS))
    shipping_address = fields.Nested(AddressSchema, load_default=None, allow_none=True)
    notes = fields.Str(load_default="", validate=validate.Length(max=1000))


class CancelOrderSchema(Schema):
    reason = fields.Str(load_default="", validate=validate.Length(max=500))


class OrderStatusSchema(Schema):
    status = fields.Str(required=True, validate=validate.OneOf(ORDER_STATUSES))
    note = fields.Str(load_default="", validate=validate.Length(max=500))


class SavedAddressSchema(AddressSchema):
    is_default = fields.Bool(load_default=False)


class ProfileSchema(Schema):
    first_name = fields.Str(validate=validate.Length(min=1, max=100))
    last_name = fields.Str(validate=validate.Length(min=1, max=100))
    email = fields.Email()
    password = fields.Str(load_only=True, validate=validate.Length(min=6, max=128))
    phone_number = fields.Str(allow_none=True, validate=validate.Length(max=30))
    profile_picture = fields.Str()
    addresses = fields.List(fields.Nested(SavedAddressSchema))

    @validates("addresses")
    def validate_addresses(self, value, **kwargs):
        if sum(1 for address in value if address.get("is_default")) > 1:
            raise ValidationError("Only one address can be the default.")


class AdminUserSchema(RegisterSchema):
    role = fields.Str(load_default="customer", validate=validate.OneOf(USER_ROLES))
    is_active = fields.Bool(load_default=True)
    profile_picture = fields.Str()
