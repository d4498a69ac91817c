"""
Unit tests for CategoryService: hierarchy rules and tree building
"""
from unittest.mock import Mock

import pytest

from app.core.errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from app.domain.category import Category, CategoryCreate
from app.services.category_service import CategoryService, build_tree


def category(category_id, parent_id=None, name=None, sort_order=0, product_count=0):
    return Category(id=category_id, store_id=1, parent_id=parent_id, name=name or f"Category {category_id}",
                    slug=f"category-{category_id}", sort_order=sort_order, product_count=product_count)


@pytest.fixture
def repo():
    repo = Mock()
    repo.find_by_id.side_effect = lambda store_id, category_id: category(category_id)
    repo.find_descendant_ids.return_value = []
    repo.slug_exists.return_value = False
    repo.count_children.return_value = 0
    return repo


@pytest.fixture
def service(repo):
    return CategoryService(repo=repo, audit=Mock())


class TestBuildTree:

    def test_nests_and_sorts(self):
        roots = build_tree([
            category(1, name="Apparel", sort_order=2),
            category(2, name="Accessories", sort_order=1),
            category(3, parent_id=1, name="Shirts"),
            category(4, parent_id=1, name="Hoodies"),
        ])

        assert [node.name for node in roots] == ["Accessories", "Apparel"]
        assert [node.name for node in roots[1].children] == ["Hoodies", "Shirts"]

    def test_orphans_become_roots(self):
        roots = build_tree([category(5, parent_id=99)])

        assert [node.id for node in roots] == [5]


class TestMove:

    def test_cannot_be_own_parent(self, service, repo):
        with pytest.raises(ValidationError, match="own parent"):
            service.move(1, 3, 3)

        repo.update.assert_not_called()

    def test_cannot_move_under_descendant(self, service, repo):
        repo.find_descendant_ids.return_value = [4, 7]

        with pytest.raises(ValidationError, match="descendants"):
            service.move(1, 3, 7)

        repo.update.assert_not_called()

    def test_missing_parent(self, service, repo):
        repo.find_by_id.side_effect = lambda store_id, category_id: None if category_id == 50 else category(category_id)

        with pytest.raises(NotFoundError, match="Parent category"):
            service.move(1, 3, 50)

    def test_move_to_root(self, service, repo):
        service.move(1, 3, None)

        repo.update.assert_called_once_with(1, 3, {"parent_id": None})
        repo.find_descendant_ids.assert_not_called()


class TestCreate:

    def test_slug_from_name(self, service, repo):
        repo.create.side_effect = lambda store_id, values: category(9, name=values["name"])

        service.create(1, CategoryCreate(name="Summer Sale"))

        assert repo.create.call_args[0][1]["slug"] == "summer-sale"

    def test_duplicate_slug(self, service, repo):
        repo.slug_exists.return_value = True

        with pytest.raises(AlreadyExistsError):
            service.create(1, CategoryCreate(name="Summer Sale"))


class TestDelete:

    def test_with_children(self, service, repo):
        repo.count_children.return_value = 2

        with pytest.raises(ConflictError) as exc:
            service.delete(1, 3)

        assert exc.value.details == {"childCount": 2}
        repo.soft_delete.assert_not_called()

    def test_with_products(self, service, repo):
        repo.find_by_id.side_effect = lambda store_id, category_id: category(category_id, product_count=4)

        with pytest.raises(ConflictError) as exc:
            service.delete(1, 3)

        assert exc.value.details == {"productCount": 4}
        repo.soft_delete.assert_not_called()

    def test_empty_category(self, service, repo):
        service.delete(1, 3)

        repo.soft_delete.assert_called_once_with(1, 3)
