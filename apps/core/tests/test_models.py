"""
Tests for soft-delete model behaviour.
"""
import pytest

from apps.companies.models import Company


@pytest.mark.django_db
class TestBaseModel:

    def test_uuid_primary_key_and_timestamps(self, company):
        assert len(str(company.id)) == 36
        assert company.created_at is not None
        assert company.updated_at is not None
        assert company.is_deleted is False

    def test_soft_delete_hides_row(self, company):
        company.delete()

        assert not Company.objects.filter(pk=company.pk).exists()
        assert Company.objects_with_deleted.get(pk=company.pk).is_deleted

    def test_queryset_delete_is_soft(self, company, other_company):
        Company.objects.filter(pk__in=[company.pk, other_company.pk]).delete()

        assert Company.objects.count() == 0
        assert Company.objects_with_deleted.count() == 2

    def test_hard_delete_removes_row(self, db):
        Company.objects.create(name='Temp', slug='temp')
        Company.objects_with_deleted.filter(slug='temp').hard_delete()

        assert not Company.objects_with_deleted.filter(slug='temp').exists()
