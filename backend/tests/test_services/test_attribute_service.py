"""
Unit tests for AttributeService value rules
"""
from unittest.mock import Mock

import pytest

from app.core.errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from app.domain.attribute import Attribute, AttributeCreate, AttributeUpdate
from app.services.attribute_service import AttributeService


def color(values=("Red", "Blue"), product_count=0):
    return Attribute(id=4, store_id=1, name="Color", values=list(values), product_count=product_count)


@pytest.fixture
def service():
    repo = Mock()
    repo.find_by_id.return_value = color()
    repo.name_exists.return_value = False
    repo.values_in_use.return_value = []
    repo.update.side_effect = lambda store_id, attribute_id, name=None, values=None: color(values or ())
    product_repo = Mock()
    return AttributeService(repo=repo, product_repo=product_repo, audit=Mock())


class TestValues:

    def test_create_cleans_values(self, service):
        service.repo.create.return_value = color()

        service.create(1, AttributeCreate(name="Color", values=[" Red ", "Blue", "Red", ""]))

        service.repo.create.assert_called_once_with(1, "Color", ["Red", "Blue"])

    def test_duplicate_name(self, service):
        service.repo.name_exists.return_value = True

        with pytest.raises(AlreadyExistsError):
            service.create(1, AttributeCreate(name="Color", values=["Red"]))

    def test_add_values_skips_existing(self, service):
        attribute = service.add_values(1, 4, ["Blue", "Green"])

        assert attribute.values == ["Red", "Blue", "Green"]

    def test_add_nothing_new_is_a_no_op(self, service):
        service.add_values(1, 4, ["Red"])

        service.repo.update.assert_not_called()

    def test_cannot_remove_last_value(self, service):
        with pytest.raises(ValidationError, match="at least one value"):
            service.remove_values(1, 4, ["Red", "Blue"])

        service.repo.update.assert_not_called()

    def test_cannot_remove_value_in_use(self, service):
        service.repo.values_in_use.return_value = ["Red"]

        with pytest.raises(ConflictError) as exc:
            service.remove_values(1, 4, ["Red"])

        assert exc.value.details == {"values": ["Red"]}
        service.repo.values_in_use.assert_called_once_with(4, ["Red"])

    def test_update_checks_dropped_values(self, service):
        service.repo.values_in_use.return_value = ["Blue"]

        with pytest.raises(ConflictError):
            service.update(1, 4, AttributeUpdate(values=["Red", "Green"]))

        service.repo.values_in_use.assert_called_once_with(4, ["Blue"])


class TestAssign:

    def test_value_must_belong_to_attribute(self, service):
        with pytest.raises(ValidationError) as exc:
            service.assign_to_product(1, 4, 10, "Purple")

        assert exc.value.details == {"allowedValues": ["Red", "Blue"]}
        service.repo.assign_to_product.assert_not_called()

    def test_product_must_exist_in_store(self, service):
        service.product_repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Product"):
            service.assign_to_product(1, 4, 10, "Red")

    def test_assigns_value(self, service, sample_product):
        service.product_repo.find_by_id.return_value = sample_product

        service.assign_to_product(1, 4, 10, "Red")

        service.repo.assign_to_product.assert_called_once_with(10, 4, "Red")


class TestDelete:

    def test_assigned_attribute(self, service):
        service.repo.find_by_id.return_value = color(product_count=3)

        with pytest.raises(ConflictError):
            service.delete(1, 4)

        service.repo.delete.assert_not_called()
