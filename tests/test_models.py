"""Tests for exontally.core.models module."""

import pytest

from exontally.core.models import ExonModel
from exontally.utils.intervals import GenomicInterval


class TestExonModelInit:
    """Tests for ExonModel construction and validation."""

    def test_gene_order_is_insertion_order(self, simple_model: ExonModel) -> None:
        assert simple_model.gene_ids == ["G1", "G2", "G3"]
        assert list(simple_model) == ["G1", "G2", "G3"]
        assert len(simple_model) == simple_model.n_genes == 3

    def test_accepts_plain_tuples(self) -> None:
        model = ExonModel({"G1": [("Chr1", 0, 10)]})
        assert model["G1"] == (GenomicInterval("Chr1", 0, 10),)

    def test_gene_without_exons_rejected(self) -> None:
        with pytest.raises(ValueError, match="no exons"):
            ExonModel({"G1": []})

    def test_gene_on_two_sequences_rejected(self) -> None:
        with pytest.raises(ValueError, match="several sequences"):
            ExonModel(
                {"G1": [GenomicInterval("Chr1", 0, 10), GenomicInterval("Chr2", 0, 10)]}
            )

    def test_invalid_coordinates_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid exon"):
            ExonModel({"G1": [GenomicInterval("Chr1", 20, 10)]})

    def test_empty_model_allowed(self) -> None:
        """An empty model is valid; the pipeline rejects it."""
        model = ExonModel({})
        assert model.n_genes == 0
        assert model.sequence_names() == set()


class TestExonModelQueries:
    """Tests for ExonModel accessors."""

    def test_contains(self, simple_model: ExonModel) -> None:
        assert "G1" in simple_model
        assert "G9" not in simple_model

    def test_sequence_names(self, simple_model: ExonModel) -> None:
        assert simple_model.sequence_names() == {"Chr1", "Chr2"}

    def test_extra_sequence_names(self) -> None:
        model = ExonModel({"G1": [("Chr1", 0, 10)]}, extra_sequence_names=["ChrM"])
        assert model.sequence_names() == {"Chr1", "ChrM"}

    def test_seqid_and_span(self, simple_model: ExonModel) -> None:
        assert simple_model.seqid("G3") == "Chr2"
        assert simple_model.span("G2") == GenomicInterval("Chr1", 1000, 1900)

    def test_span_keeps_common_strand(self) -> None:
        model = ExonModel({"G1": [("Chr1", 0, 10, "-"), ("Chr1", 20, 30, "-")]})
        assert model.span("G1").strand == "-"

    def test_exons_by_gene_is_a_copy(self, simple_model: ExonModel) -> None:
        mapping = simple_model.exons_by_gene()
        mapping.pop("G1")
        assert "G1" in simple_model


class TestExonModelRename:
    """Tests for renamed() and fingerprint()."""

    def test_renamed(self, simple_model: ExonModel) -> None:
        renamed = simple_model.renamed({"Chr1": "1"})
        assert renamed.sequence_names() == {"1", "Chr2"}
        assert renamed.gene_ids == simple_model.gene_ids
        assert simple_model.sequence_names() == {"Chr1", "Chr2"}

    def test_renamed_extra_names(self) -> None:
        model = ExonModel({"G1": [("1", 0, 10)]}, extra_sequence_names=["MT"])
        renamed = model.renamed({"1": "Chr1", "MT": "ChrM"})
        assert renamed.sequence_names() == {"Chr1", "ChrM"}

    def test_fingerprint_stable(self, simple_model: ExonModel) -> None:
        same = ExonModel(simple_model.exons_by_gene())
        assert same.fingerprint() == simple_model.fingerprint()

    def test_fingerprint_changes_with_content(self, simple_model: ExonModel) -> None:
        assert simple_model.renamed({"Chr1": "1"}).fingerprint() != simple_model.fingerprint()
