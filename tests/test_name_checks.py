from cpstan import name_checks
import pytest


class TestNameChecks:
    def test_check_names(self):
        # Test with unique names: this should pass without raising an error

        name_checks.check_names(
            params=["cp_1", "int_1", "x_1"],
            varying=["cp_1_id"],
            data_columns=["x", "y", "id"],
        )

        # Test with duplicate names
        with pytest.raises(ValueError, match="Duplicate parameter name: int_1"):
            name_checks.check_names(
                params=["int_1", "int_1"],
                varying=[],
                data_columns=["x", "y"],
            )

        with pytest.raises(ValueError, match="Duplicate varying effect name: cp_1_id"):
            name_checks.check_names(
                params=["cp_1"],
                varying=["cp_1_id", "cp_1_id"],
                data_columns=["x", "y"],
            )

        # Test with a data column that is also a parameter name
        with pytest.raises(ValueError, match="Data column name conflicts with another name: cp_1"):
            name_checks.check_names(
                params=["cp_1"],
                varying=[],
                data_columns=["x", "cp_1"],
            )

        # Test with reserved names
        with pytest.raises(ValueError, match="Reserved variable name used: MAXX"):
            name_checks.check_names(
                params=["cp_1"],
                varying=[],
                data_columns=["MAXX", "y"],
            )

        # the number of levels of grouping variable id is N_id
        with pytest.raises(ValueError, match="Reserved variable name used: N_id"):
            name_checks.check_names(
                params=["cp_1"],
                varying=["cp_1_id"],
                data_columns=["N_id", "y", "id"],
            )

        # Test with empty names
        with pytest.raises(ValueError, match="Empty name found. All names must be non-empty."):
            name_checks.check_names(
                params=["cp_1"],
                varying=[],
                data_columns=["", "y"],
            )

    def test_invalid_identifiers(self):
        with pytest.raises(ValueError, match="Invalid name: 1x"):
            name_checks.check_names(params=[], varying=[], data_columns=["1x", "y"])

        with pytest.raises(ValueError, match="Invalid name: _y"):
            name_checks.check_names(params=[], varying=[], data_columns=["x", "_y"])

        with pytest.raises(ValueError, match="can not end with two underscores: y__"):
            name_checks.check_names(params=[], varying=[], data_columns=["x", "y__"])

        with pytest.raises(ValueError, match="Stan keyword used as a name: target"):
            name_checks.check_names(params=[], varying=[], data_columns=["x", "target"])
