from django.db import models
from django.contrib.auth.models import AbstractUser
from decimal import Decimal


# --- Choice constants ---

class UserRole(models.TextChoices):
    ADMIN = 'admin', 'Admin'
    MANAGER = 'manager', 'Manager'
    EMPLOYEE = 'employee', 'Employee'
    DELIVERY = 'delivery', 'Delivery'


class OrderChannel(models.TextChoices):
    DINE_IN = 'dine-in', 'Dine-in'
    TAKEAWAY = 'takeaway', 'Takeaway'
    DELIVERY = 'delivery', 'Delivery'
    ONLINE = 'online', 'Online'


class OrderStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PREPARING = 'preparing', 'Preparing'
    READY = 'ready', 'Ready'
    SERVED = 'served', 'Served'
    COMPLETED = 'completed', 'Completed'
    OUT_FOR_DELIVERY = 'out_for_delivery', 'Out For Delivery'
    DELIVERED = 'delivered', 'Delivered'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    REFUNDED = 'refunded', 'Refunded'


class PaymentMethod(models.TextChoices):
    CASH = 'cash', 'Cash'
    CARD = 'card', 'Card'
    MOBILE = 'mobile', 'Mobile'


# --- Models ---

class User(AbstractUser):
    """Staff account; id and password from AbstractUser."""
    name = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    role = models.CharField(
        max_length=20, choices=UserRole.choices, default=UserRole.EMPLOYEE
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_user'

    def save(self, *args, **kwargs):
        if not self.name and (self.first_name or self.last_name):
            self.name = f'{self.first_name or ""} {self.last_name or ""}'.strip()
        super().save(*args, **kwargs)

    @property
    def display_name(self):
        return self.name or self.get_full_name() or self.username


class Restaurant(models.Model):
    """Owning scope for orders, menu and live events."""
    owner = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='restaurants'
    )
    slug = models.SlugField(unique=True, max_length=100)
    name = models.CharField(max_length=255)
    address = models.TextField(blank=True)
    tax_percent = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        help_text='Tax percentage applied on subtotal (e.g. 10 for 10%%). Empty uses POS_DEFAULT_TAX_PERCENT.'
    )
    is_open = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_restaurant'
        ordering = ['name']

    def __str__(self):
        return self.name


class Staff(models.Model):
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.CASCADE, related_name='staffs'
    )
    user = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name='staff_profiles'
    )
    is_manager = models.BooleanField(default=False)
    designation = models.CharField(max_length=100, blank=True)
    is_suspend = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'core_staff'
        ordering = ['restaurant', 'user']
        constraints = [
            models.UniqueConstraint(
                fields=['restaurant', 'user'],
                name='unique_staff_restaurant_user'
            )
        ]

    def __str__(self):
        return f'{self.user.display_name} @ {self.restaurant.name}'


class MenuItem(models.Model):
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.CASCADE, related_name='menu_items'
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    cost_of_goods = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0'),
        help_text='Current cost; copied onto each order line when the order is placed'
    )
    is_available = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_menu_item'
        ordering = ['name']

    def __str__(self):
        return self.name


class Order(models.Model):
    # Placeholder (TMP...) until the final number derived from id is written.
    order_number = models.CharField(max_length=32, unique=True)
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.PROTECT, related_name='orders'
    )
    employee = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='orders'
    )
    channel = models.CharField(
        max_length=20, choices=OrderChannel.choices, default=OrderChannel.DINE_IN
    )
    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING
    )
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(
        max_length=20, choices=PaymentMethod.choices, blank=True
    )
    customer_name = models.CharField(max_length=100, blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)
    table_number = models.CharField(max_length=16, blank=True)
    notes = models.TextField(blank=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0'))
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_order'
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f'Order {self.order_number}'


class OrderItem(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name='items'
    )
    menu_item = models.ForeignKey(
        MenuItem, on_delete=models.PROTECT, related_name='order_items'
    )
    position = models.PositiveIntegerField(default=0)
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    cost_of_goods = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True,
        help_text='Menu item cost at order time; null only on legacy rows'
    )
    special_instructions = models.TextField(blank=True)

    class Meta:
        db_table = 'core_order_item'
        ordering = ['order', 'position', 'id']

    def __str__(self):
        return f'{self.quantity} x {self.name} ({self.order.order_number})'


class OrderStatusChange(models.Model):
    """Append-only lifecycle history; one row per committed transition."""
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name='status_changes'
    )
    from_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    to_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    changed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='order_status_changes'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'core_order_status_change'
        ordering = ['order', 'id']

    def __str__(self):
        return f'{self.order_id}: {self.from_status} -> {self.to_status}'


class NumberingIssue(models.Model):
    """Order left under its placeholder number; repaired by reconcile_order_numbers."""
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name='numbering_issues'
    )
    placeholder = models.CharField(max_length=32)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'core_numbering_issue'
        ordering = ['-created_at']

    def __str__(self):
        state = 'resolved' if self.resolved_at else 'open'
        return f'Numbering issue for order #{self.order_id} ({state})'


class ActivityLog(models.Model):
    user = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='activity_logs'
    )
    action = models.CharField(max_length=100)
    details = models.TextField(blank=True)
    ip_address = models.CharField(max_length=45, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'core_activity_log'
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.action} by {self.user_id or "system"}'
