from django.core.paginator import Paginator
from rest_framework import serializers


class PaginationQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, default=1, min_value=1, help_text="Page number (1-based)")
    page_size = serializers.IntegerField(required=False, default=10, min_value=1, max_value=100, help_text="Number of items per page")


def paginate(qs, query_params, serializer_class, **serializer_kwargs) -> dict:
    """Standard {"count", "results"} page built from ?page=&page_size=."""
    pager_ser = PaginationQuerySerializer(data=query_params)
    pager_ser.is_valid(raise_exception=False)
    page = pager_ser.validated_data.get("page", 1)
    page_size = pager_ser.validated_data.get("page_size", 10)

    paginator = Paginator(qs, page_size)
    page_obj = paginator.get_page(page)
    data = serializer_class(page_obj.object_list, many=True, **serializer_kwargs).data
    return {"count": paginator.count, "results": data}
