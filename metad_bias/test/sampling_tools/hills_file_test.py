import os
import numpy as np
import pytest as pytest
from metad_bias.sampling_tools.hills_file import HillsWriter, HillsReader, backup_file
from metad_bias.sampling_tools.kernels import Kernel, matrix_to_upper


def write_file(filename, text):
    with open(filename, "w") as fout:
        fout.write(text)


def test_write_and_read(tmp_path):
    filename = str(tmp_path / "HILLS")
    writer = HillsWriter(filename, ["x", "y"], bias_factor=10.0)
    writer.write_hill(Kernel([0.5, -0.5], [0.1, 0.2], 1.0), 1.0, 1.5)
    writer.write_hill(Kernel([0.6, -0.4], [0.1, 0.2], 0.8), 2.0, 1.2)
    writer.close()

    with open(filename) as fin:
        header = fin.readline().split()
    assert header == [
        "#!", "FIELDS", "time", "x", "y", "multivariate",
        "sigma_x", "sigma_y", "height", "biasf",
    ]

    reader = HillsReader(filename, ["x", "y"])
    assert reader.exists()
    reader.open()
    hills = reader.read_hills()
    assert len(hills) == 2
    assert hills[0].center == pytest.approx([0.5, -0.5])
    assert hills[0].sigma == pytest.approx([0.1, 0.2])
    assert hills[0].height == pytest.approx(1.5)
    assert not hills[0].multivariate
    assert hills[1].height == pytest.approx(1.2)
    assert reader.scan_one_hill() is None
    reader.close()
    assert not reader.is_open


def test_multivariate_record(tmp_path):
    filename = str(tmp_path / "HILLS")
    upper = matrix_to_upper(np.linalg.inv(np.array([[0.04, 0.01], [0.01, 0.09]])))
    writer = HillsWriter(filename, ["x", "y"], multivariate=True)
    writer.write_hill(Kernel([0.0, 1.0], upper, 1.0, multivariate=True), 0.0, 1.0)
    with pytest.raises(ValueError):
        writer.write_hill(Kernel([0.0, 1.0], [0.1, 0.1], 1.0), 0.0, 1.0)
    writer.close()

    with open(filename) as fin:
        header = fin.readline().split()
    assert header[6:9] == ["sigma_x_x", "sigma_y_y", "sigma_y_x"]

    reader = HillsReader(filename, ["x", "y"])
    reader.open()
    hill = reader.scan_one_hill()
    assert hill.multivariate
    assert hill.sigma == pytest.approx(upper, rel=1.0e-8)


def test_partial_line(tmp_path):
    filename = str(tmp_path / "HILLS")
    writer = HillsWriter(filename, ["x"])
    writer.write_hill(Kernel([0.5], [0.1], 1.0), 1.0, 1.0)
    writer.close()
    with open(filename, "a") as fout:
        fout.write("2.0 0.7 false 0.1")

    reader = HillsReader(filename, ["x"])
    reader.open()
    assert len(reader.read_hills()) == 1
    assert reader.scan_one_hill() is None

    # the record is completed later by the writing walker
    with open(filename, "a") as fout:
        fout.write(" 1.0 1.0\n")
    hill = reader.scan_one_hill()
    assert hill.center == pytest.approx([0.7])
    assert reader.scan_one_hill() is None


def test_periodicity_mismatch(tmp_path):
    filename = str(tmp_path / "HILLS")
    writer = HillsWriter(filename, ["phi"], periodicity=[[-np.pi, np.pi]])
    writer.write_hill(Kernel([0.5], [0.1], 1.0), 1.0, 1.0)
    writer.close()

    reader = HillsReader(filename, ["phi"], periodicity=[[-np.pi, np.pi]])
    reader.open()
    assert len(reader.read_hills()) == 1

    # file is periodic, CV is not
    reader = HillsReader(filename, ["phi"])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()

    # different domains
    reader = HillsReader(filename, ["phi"], periodicity=[[0.0, 2.0 * np.pi]])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()

    # CV is periodic, file is not
    write_file(filename, "#! FIELDS time phi multivariate sigma_phi height biasf\n1 0.5 false 0.1 1 1\n")
    reader = HillsReader(filename, ["phi"], periodicity=[[-np.pi, np.pi]])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()


def test_pi_in_header(tmp_path):
    filename = str(tmp_path / "HILLS")
    write_file(
        filename,
        "#! FIELDS time phi multivariate sigma_phi height biasf\n"
        "#! SET min_phi -pi\n"
        "#! SET max_phi pi\n"
        "1 0.5 false 0.1 1 1\n",
    )
    reader = HillsReader(filename, ["phi"], periodicity=[[-np.pi, np.pi]])
    reader.open()
    assert reader.scan_one_hill().center == pytest.approx([0.5])


def test_broken_records(tmp_path):
    filename = str(tmp_path / "HILLS")

    # unknown multivariate flag
    write_file(filename, "#! FIELDS time x multivariate sigma_x height biasf\n1 0.5 maybe 0.1 1 1\n")
    reader = HillsReader(filename, ["x"])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()

    # missing CV field
    write_file(filename, "#! FIELDS time y multivariate sigma_x height biasf\n1 0.5 false 0.1 1 1\n")
    reader = HillsReader(filename, ["x"])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()

    # record shorter than header
    write_file(filename, "#! FIELDS time x multivariate sigma_x height biasf\n1 0.5 false 0.1\n")
    reader = HillsReader(filename, ["x"])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()

    # no header at all
    write_file(filename, "1 0.5 false 0.1 1 1\n")
    reader = HillsReader(filename, ["x"])
    reader.open()
    with pytest.raises(ValueError):
        reader.scan_one_hill()


def test_extra_fields(tmp_path):
    filename = str(tmp_path / "HILLS")
    write_file(
        filename,
        "#! FIELDS time x multivariate sigma_x height biasf clock\n"
        "1 0.5 false 0.1 2 1 1700000000\n"
        "\n"
        "# comment\n"
        "2 0.6 false 0.1 3 1 1700000001\n",
    )
    reader = HillsReader(filename, ["x"])
    reader.open()
    hills = reader.read_hills()
    assert [h.height for h in hills] == pytest.approx([2.0, 3.0])


def test_missing_file(tmp_path):
    reader = HillsReader(str(tmp_path / "HILLS"), ["x"])
    assert not reader.exists()
    with pytest.raises(OSError):
        reader.open()


def test_backup_and_append(tmp_path):
    filename = str(tmp_path / "HILLS")
    writer = HillsWriter(filename, ["x"])
    writer.write_hill(Kernel([0.5], [0.1], 1.0), 1.0, 1.0)
    writer.close()

    # a new run keeps the old file as backup
    writer = HillsWriter(filename, ["x"], clock=True)
    writer.write_hill(Kernel([0.6], [0.1], 1.0), 1.0, 1.0)
    writer.close()
    assert os.path.isfile(str(tmp_path / "bck.0.HILLS"))

    # restarts append with a new header
    writer = HillsWriter(filename, ["x"], append=True)
    writer.write_hill(Kernel([0.7], [0.1], 1.0), 2.0, 1.0)
    writer.close()

    reader = HillsReader(filename, ["x"])
    reader.open()
    hills = reader.read_hills()
    assert [h.center[0] for h in hills] == pytest.approx([0.6, 0.7])

    assert backup_file(str(tmp_path / "nothing")) is None
    assert backup_file(filename) == str(tmp_path / "bck.1.HILLS")
