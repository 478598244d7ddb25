from storefront.core.config import settings


_BASE_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #1f2937; color: white; padding: 20px; text-align: center; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; }
    th, td { padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }
    .total { font-size: 18px; font-weight: bold; }
    .code { font-size: 28px; letter-spacing: 6px; font-weight: bold; }
"""


def _wrap(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_BASE_STYLE}</style></head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{settings.PROJECT_NAME}</h1>
                <p>{title}</p>
            </div>
            {body}
        </div>
    </body>
    </html>
    """


def _display_name(user) -> str:
    return user.firstname or user.username


def otp_template(code: str, purpose_label: str, ttl_seconds: int) -> str:
    """HTML email for password reset and email update codes"""
    minutes = max(1, ttl_seconds // 60)
    unit = "minute" if minutes == 1 else "minutes"
    return _wrap(
        purpose_label,
        f"""
        <p>Your one-time code for {purpose_label.lower()} is:</p>
        <p class="code">{code}</p>
        <p>It will expire in {minutes} {unit}. If you did not request it, ignore this email.</p>
        """,
    )


def order_confirmation_template(order, user) -> str:
    """HTML email template for order confirmation"""
    items_html = ""
    for item in order.items:
        items_html += f"""
        <tr>
            <td>{item.product_name} ({item.color}, {item.size})</td>
            <td>{item.quantity}</td>
            <td>₹{item.unit_price:,.2f}</td>
            <td>₹{item.final_price:,.2f}</td>
        </tr>
        """

    address = order.shipping_address
    return _wrap(
        "Order Confirmation",
        f"""
        <p>Dear {_display_name(user)},</p>
        <p>Thank you for your order! Your order <strong>#{order.order_number}</strong> has been placed.</p>
        <table>
            <thead>
                <tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>
            </thead>
            <tbody>{items_html}</tbody>
        </table>
        <table>
            <tr><td>Subtotal:</td><td>₹{order.subtotal:,.2f}</td></tr>
            <tr><td>Discount:</td><td>-₹{order.discount_amount:,.2f}</td></tr>
            <tr><td>Delivery:</td><td>₹{order.delivery_charge:,.2f}</td></tr>
            <tr class="total"><td>Total:</td><td>₹{order.total_amount:,.2f}</td></tr>
        </table>
        <h3>Shipping Address:</h3>
        <p>
            {address.full_name}<br>
            {address.mobile_number}<br>
            {address.address}, {address.locality}<br>
            {address.city}, {address.state} - {address.pincode}
        </p>
        """,
    )


def item_status_template(order, item, user) -> str:
    return _wrap(
        f"Item {item.status.value}",
        f"""
        <p>Dear {_display_name(user)},</p>
        <p>The status of <strong>{item.product_name}</strong> ({item.color}, {item.size})
        in order <strong>#{order.order_number}</strong> is now <strong>{item.status.value}</strong>.</p>
        <p><a href="{settings.FRONTEND_URL}/orders">View your orders</a></p>
        """,
    )
