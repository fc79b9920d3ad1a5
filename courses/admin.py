from django.contrib import admin

from .models import Course


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("title", "category", "price", "created_at")
    search_fields = ("title", "category")
    list_filter = ("category",)
