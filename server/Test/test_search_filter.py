import pytest

from App.exceptions import FilterValidationError
from App.schema.Search_schema import MAX_RESULTS_CAP, HybridWeights, SearchFilter


def test_defaults():
    filters = SearchFilter()
    assert filters.max_results == 10
    assert filters.min_similarity == 0.1
    assert not filters.has_scope


def test_create_drops_none_and_freezes_lists():
    filters = SearchFilter.create(product_ids=["P1"], document_ids=None, max_results=5, min_similarity=None)
    assert filters.product_ids == ("P1",)
    assert filters.document_ids == ()
    assert filters.max_results == 5
    assert filters.min_similarity == 0.1
    assert filters.has_scope


@pytest.mark.parametrize("values, field", [
    ({"max_results": 0}, "max_results"),
    ({"max_results": MAX_RESULTS_CAP + 1}, "max_results"),
    ({"min_similarity": -0.1}, "min_similarity"),
    ({"min_similarity": 1.5}, "min_similarity"),
])
def test_out_of_range_values_are_rejected(values, field):
    with pytest.raises(FilterValidationError) as info:
        SearchFilter.create(**values)
    assert info.value.field == field


def test_filter_is_immutable():
    filters = SearchFilter.create(product_ids=["P1"])
    with pytest.raises(Exception):
        filters.max_results = 20


def test_negative_weights_are_rejected():
    with pytest.raises(FilterValidationError):
        HybridWeights.create(vector_weight=-1)
    weights = HybridWeights.create(lexical_weight=0.5)
    assert weights.vector_weight == 0.7
    assert weights.lexical_weight == 0.5
