"""Tests for cabinet model templates and their material/accessory links."""

import pytest

from shopfloor.database.models import CabinetModel, Dimensions
from shopfloor.errors import ConflictError, NotFoundError, ValidationError


class TestCabinetModels:
    def test_create_and_get(self, services, base_cabinet):
        model = services.repo.get_cabinet_model_by_id(base_cabinet)
        assert model.name == "Base Cabinet"
        assert model.default_dimensions == Dimensions(24, 30, 24)

    def test_duplicate_name(self, services, base_cabinet):
        with pytest.raises(ConflictError):
            services.repo.create_cabinet_model(CabinetModel(
                name="Base Cabinet", default_width=24, default_height=30,
                default_depth=24, min_width=18, max_width=36,
                min_height=30, max_height=36, min_depth=12, max_depth=24,
            ))

    def test_inverted_range_rejected(self, services):
        with pytest.raises(ValidationError) as exc:
            services.repo.create_cabinet_model(CabinetModel(
                name="Broken", default_width=24, default_height=30,
                default_depth=24, min_width=36, max_width=18,
                min_height=30, max_height=36, min_depth=12, max_depth=24,
            ))
        assert exc.value.field == "min_width"

    def test_default_outside_range_rejected(self, services):
        with pytest.raises(ValidationError) as exc:
            services.repo.create_cabinet_model(CabinetModel(
                name="Tall", default_width=24, default_height=90,
                default_depth=24, min_width=18, max_width=36,
                min_height=30, max_height=36, min_depth=12, max_depth=24,
            ))
        assert exc.value.field == "default_height"

    def test_update_model(self, services, base_cabinet):
        model = services.repo.get_cabinet_model_by_id(base_cabinet)
        model.base_cost = 65.0
        services.repo.update_cabinet_model(model)
        assert services.repo.get_cabinet_model_by_id(
            base_cabinet).base_cost == 65.0

    def test_delete_unused_model(self, services, base_cabinet):
        services.repo.delete_cabinet_model(base_cabinet)
        assert services.repo.get_cabinet_model_by_id(base_cabinet) is None

    def test_delete_model_used_by_project_refused(
        self, services, configured_cabinet, plywood,
    ):
        project_id = services.kitchen_projects.create_project("Smith Kitchen")
        services.kitchen_projects.add_cabinet(
            project_id, configured_cabinet, Dimensions(24, 30, 24), plywood,
        )
        with pytest.raises(ConflictError):
            services.repo.delete_cabinet_model(configured_cabinet)

    def test_delete_missing_model(self, services):
        with pytest.raises(NotFoundError):
            services.repo.delete_cabinet_model(999)


class TestModelLinks:
    def test_link_material(self, services, base_cabinet, plywood):
        services.repo.link_material(base_cabinet, plywood, 2.0)
        links = services.repo.get_model_materials(base_cabinet)
        assert len(links) == 1
        assert links[0].material_name == "3/4 Plywood"
        assert links[0].cost_factor_per_sqft == 2.0

    def test_relink_material_updates_factor(self, services, base_cabinet,
                                            plywood):
        first = services.repo.link_material(base_cabinet, plywood, 2.0)
        second = services.repo.link_material(base_cabinet, plywood, 2.5)
        assert first == second
        links = services.repo.get_model_materials(base_cabinet)
        assert links[0].cost_factor_per_sqft == 2.5

    def test_material_must_be_sheet_material(self, services, base_cabinet,
                                             hinge):
        with pytest.raises(ValidationError) as exc:
            services.repo.link_material(base_cabinet, hinge, 1.0)
        assert exc.value.field == "item_type"

    def test_accessory_must_be_hardware(self, services, base_cabinet,
                                        plywood):
        with pytest.raises(ValidationError):
            services.repo.link_accessory(base_cabinet, plywood, 2)

    def test_link_to_missing_model(self, services, plywood):
        with pytest.raises(NotFoundError):
            services.repo.link_material(999, plywood, 1.0)

    def test_negative_factor_rejected(self, services, base_cabinet, plywood):
        with pytest.raises(ValidationError):
            services.repo.link_material(base_cabinet, plywood, -1.0)

    def test_accessory_links(self, services, configured_cabinet):
        links = services.repo.get_model_accessories(configured_cabinet)
        by_name = {l.accessory_name: l for l in links}
        assert by_name["Soft-close Hinge"].quantity_per_cabinet == 2
        assert by_name["Soft-close Hinge"].cost_factor_per_unit == 0.5
        assert by_name["Bar Handle"].unit_price == 6.0

    def test_unlink(self, services, configured_cabinet, plywood, hinge):
        services.repo.unlink_material(configured_cabinet, plywood)
        services.repo.unlink_accessory(configured_cabinet, hinge)
        assert services.repo.get_model_materials(configured_cabinet) == []
        assert len(services.repo.get_model_accessories(configured_cabinet)) == 1

    def test_unlink_missing(self, services, base_cabinet, plywood):
        with pytest.raises(NotFoundError):
            services.repo.unlink_material(base_cabinet, plywood)
