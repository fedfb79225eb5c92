from django.contrib import admin

from .models import Batch, BatchMembership

# Membership and completion change only through processing.services.batches,
# so the admin shows those fields without letting them be edited.
MEMBERSHIP_FIELDS = (
    "reception",
    "wet_weight_contribution",
    "percentage_of_total",
    "proportional_dried_weight",
)


class BatchMembershipInline(admin.TabularInline):
    model = BatchMembership
    extra = 0
    can_delete = False
    fields = MEMBERSHIP_FIELDS
    readonly_fields = MEMBERSHIP_FIELDS

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "batch_type",
        "status",
        "start_date",
        "expected_completion_date",
        "total_wet_weight",
        "total_dried_weight",
    )
    list_filter = ("batch_type", "status")
    readonly_fields = (
        "status",
        "expected_completion_date",
        "total_wet_weight",
        "total_dried_weight",
        "total_sacks_70kg",
        "remainder_kg",
        "completed_at",
        "completed_by",
    )
    inlines = [BatchMembershipInline]

    def has_add_permission(self, request):
        return False


@admin.register(BatchMembership)
class BatchMembershipAdmin(admin.ModelAdmin):
    list_display = (
        "batch",
        "reception",
        "wet_weight_contribution",
        "percentage_of_total",
        "proportional_dried_weight",
    )
    list_filter = ("batch__status",)
    search_fields = ("reception__reception_number",)
    readonly_fields = ("batch",) + MEMBERSHIP_FIELDS

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
