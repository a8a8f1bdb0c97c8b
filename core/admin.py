from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.forms import UserCreationForm, UserChangeForm
from . import numbering
from .models import (
    User,
    Restaurant,
    Staff,
    MenuItem,
    Order,
    OrderItem,
    OrderStatusChange,
    NumberingIssue,
    ActivityLog,
)


# --- Inlines ---

class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    autocomplete_fields = ['menu_item']
    readonly_fields = ('cost_of_goods',)


class OrderStatusChangeInline(admin.TabularInline):
    model = OrderStatusChange
    extra = 0
    can_delete = False
    readonly_fields = ('from_status', 'to_status', 'changed_by', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


class StaffInline(admin.TabularInline):
    model = Staff
    extra = 0
    autocomplete_fields = ['user']


# --- User (replace default auth User admin) ---


class CustomUserCreationForm(UserCreationForm):
    """Add form must declare custom fields so they render and save."""
    class Meta(UserCreationForm.Meta):
        model = User
        fields = UserCreationForm.Meta.fields + ('name', 'phone', 'role')


class CustomUserChangeForm(UserChangeForm):
    """Edit form including all custom User model fields."""
    class Meta:
        model = User
        fields = '__all__'


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    form = CustomUserChangeForm
    add_form = CustomUserCreationForm
    list_display = ('username', 'name', 'phone', 'role', 'is_active', 'created_at')
    list_filter = ('role', 'is_active')
    search_fields = ('name', 'phone', 'username', 'email')
    ordering = ('-date_joined',)
    readonly_fields = ('created_at', 'updated_at')

    fieldsets = BaseUserAdmin.fieldsets + (
        ('POS', {'fields': ('name', 'phone', 'role', 'created_at', 'updated_at')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('POS', {'fields': ('name', 'phone', 'role')}),
    )


@admin.register(Restaurant)
class RestaurantAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'owner', 'tax_percent', 'is_open', 'created_at')
    list_filter = ('is_open',)
    search_fields = ('name', 'slug')
    prepopulated_fields = {'slug': ('name',)}
    inlines = (StaffInline,)
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ('user', 'restaurant', 'is_manager', 'designation', 'is_suspend', 'created_at')
    list_filter = ('restaurant', 'is_manager', 'is_suspend')
    search_fields = ('user__name', 'user__username', 'user__phone')
    autocomplete_fields = ('user', 'restaurant')


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'restaurant', 'price', 'cost_of_goods', 'is_available', 'is_active')
    list_filter = ('restaurant', 'is_available', 'is_active')
    search_fields = ('name',)
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'order_number', 'restaurant', 'channel', 'status', 'payment_status',
        'total', 'employee', 'created_at', 'completed_at',
    )
    list_filter = ('restaurant', 'status', 'payment_status', 'channel')
    search_fields = ('order_number', 'customer_name', 'customer_phone')
    autocomplete_fields = ('restaurant', 'employee')
    inlines = (OrderItemInline, OrderStatusChangeInline)
    # status moves only through the service layer so history and events stay consistent
    readonly_fields = ('order_number', 'status', 'completed_at', 'created_at', 'updated_at')


@admin.register(NumberingIssue)
class NumberingIssueAdmin(admin.ModelAdmin):
    list_display = ('order', 'placeholder', 'error', 'created_at', 'resolved_at')
    list_filter = ('resolved_at',)
    search_fields = ('placeholder', 'order__order_number')
    readonly_fields = ('order', 'placeholder', 'error', 'created_at', 'resolved_at')
    actions = ['reconcile_numbers']

    @admin.action(description='Assign final order numbers to placeholder orders')
    def reconcile_numbers(self, request, queryset):
        results = numbering.reconcile_placeholder_numbers()
        failed = sum(1 for r in results if not r[3])
        self.message_user(request, f'Renamed {len(results) - failed} order(s).', messages.SUCCESS)
        if failed:
            self.message_user(request, f'{failed} order(s) could not be renamed.', messages.ERROR)


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'details', 'ip_address', 'created_at')
    list_filter = ('action',)
    search_fields = ('details', 'user__name', 'user__username')
    readonly_fields = ('user', 'action', 'details', 'ip_address', 'created_at')
