import os
import time
import numpy as np

from .kernels import Kernel, precision_to_band, band_to_precision, band_field_names
from .utils import parse_bound


def backup_file(filename: str) -> str:
    """move an existing file to `bck.<n>.<name>` with the first free n

    Returns:
        name of the backup, or None if `filename` did not exist
    """
    if not os.path.isfile(filename):
        return None
    dirname, basename = os.path.split(filename)
    n = 0
    while os.path.exists(os.path.join(dirname, f"bck.{n}.{basename}")):
        n += 1
    backup = os.path.join(dirname, f"bck.{n}.{basename}")
    os.rename(filename, backup)
    return backup


def sigma_field_names(names: list, multivariate: bool) -> list:
    if multivariate:
        return band_field_names(names)
    return [f"sigma_{name}" for name in names]


class HillsWriter:
    """Append-only log of deposited kernels

    Every kernel is written as one line and flushed immediately, such that
    other walkers never see partial records except for a missing line end.

    Args:
        filename: name of the hills file
        names: names of the CVs
        periodicity: per CV [lower, upper] or None
        multivariate: kernels are written in the band form of the covariance
        bias_factor: bias factor written with every kernel
        append: append to an existing file (restart), otherwise an existing file is backed up
        clock: write the wall clock time with every kernel
        fmt: number format
    """

    def __init__(
        self,
        filename: str,
        names: list,
        periodicity: list = None,
        multivariate: bool = False,
        bias_factor: float = 1.0,
        append: bool = False,
        clock: bool = False,
        fmt: str = "%20.12e",
    ):
        self.filename = filename
        self.names = list(names)
        self.ncoords = len(self.names)
        self.periodicity = periodicity if periodicity else [None] * self.ncoords
        self.multivariate = multivariate
        self.bias_factor = bias_factor
        self.clock = clock
        self.fmt = fmt

        if not append:
            backup_file(filename)
        self._file = open(filename, "a" if append else "w")
        self._write_header()

    def _write_header(self):
        fields = (
            ["time"]
            + self.names
            + ["multivariate"]
            + sigma_field_names(self.names, self.multivariate)
            + ["height", "biasf"]
        )
        if self.clock:
            fields.append("clock")
        header = f"#! FIELDS {' '.join(fields)}\n"
        for name, per in zip(self.names, self.periodicity):
            if per:
                header += f"#! SET min_{name} {float(per[0])!r}\n"
                header += f"#! SET max_{name} {float(per[1])!r}\n"
        self._file.write(header)
        self._file.flush()

    def write_hill(self, kernel: Kernel, time_stamp: float, height: float):
        """append one kernel to the file

        Args:
            kernel: the deposited kernel
            time_stamp: simulation time of the deposition
            height: height as written to file
        """
        if kernel.multivariate != self.multivariate:
            raise ValueError(
                f" >>> Error: Hills file {self.filename} does not store {'multivariate' if kernel.multivariate else 'diagonal'} kernels!"
            )
        if kernel.multivariate:
            sigma = precision_to_band(kernel.sigma, self.ncoords)
        else:
            sigma = kernel.sigma

        words = [self.fmt % time_stamp]
        words += [self.fmt % c for c in kernel.center]
        words.append("true" if kernel.multivariate else "false")
        words += [self.fmt % s for s in sigma]
        words += [self.fmt % height, self.fmt % self.bias_factor]
        if self.clock:
            words.append(str(int(time.time())))
        self._file.write(" ".join(words) + "\n")
        self._file.flush()

    def close(self):
        if not self._file.closed:
            self._file.close()


class HillsReader:
    """Incremental reader of a hills file

    Keeps the byte offset behind the last complete record, such that a file
    which is still written by another walker can be polled repeatedly. A last
    line without line end is not consumed.

    Args:
        filename: name of the hills file
        names: names of the CVs
        periodicity: per CV [lower, upper] or None, checked against the file
    """

    def __init__(self, filename: str, names: list, periodicity: list = None):
        self.filename = filename
        self.names = list(names)
        self.ncoords = len(self.names)
        self.periodicity = periodicity if periodicity else [None] * self.ncoords
        self.offset = 0
        self.fields = None
        self.settings = {}
        self._file = None

    @property
    def is_open(self) -> bool:
        return self._file is not None and not self._file.closed

    def exists(self) -> bool:
        return os.path.isfile(self.filename)

    def open(self):
        try:
            self._file = open(self.filename, "rb")
        except OSError as e:
            raise OSError(f" >>> Error: hills file {self.filename} could not be opened!") from e
        self.offset = 0
        self.fields = None
        self.settings = {}

    def close(self):
        if self.is_open:
            self._file.close()

    def scan_one_hill(self) -> Kernel:
        """next complete kernel of the file, the height is returned as written

        Returns:
            kernel: next kernel, or None if no complete record is left
        """
        self._file.seek(self.offset)
        while True:
            raw = self._file.readline()
            if not raw.endswith(b"\n"):
                return None
            self.offset += len(raw)

            line = raw.decode().strip()
            if not line:
                continue
            if line.startswith("#"):
                self._parse_header(line)
                continue
            return self._parse_hill(line)

    def read_hills(self) -> list:
        """all complete kernels behind the current position"""
        hills = []
        hill = self.scan_one_hill()
        while hill is not None:
            hills.append(hill)
            hill = self.scan_one_hill()
        return hills

    def _parse_header(self, line: str):
        words = line.split()
        if len(words) < 2 or words[0] != "#!":
            return
        if words[1] == "FIELDS":
            self.fields = words[2:]
            self.settings = {}
        elif words[1] == "SET" and len(words) >= 4:
            self.settings[words[2]] = words[3]

    def _check_periodicity(self):
        for name, per in zip(self.names, self.periodicity):
            in_file = f"min_{name}" in self.settings and f"max_{name}" in self.settings
            if in_file != bool(per):
                raise ValueError(
                    f" >>> Error: In hills file {self.filename} periodicity for variable {name} does not match periodicity in input!"
                )
            if per:
                domain = (
                    parse_bound(self.settings[f"min_{name}"]),
                    parse_bound(self.settings[f"max_{name}"]),
                )
                if not np.allclose(domain, per, rtol=1.0e-8, atol=1.0e-10):
                    raise ValueError(
                        f" >>> Error: In hills file {self.filename} periodicity for variable {name} does not match periodicity in input!"
                    )

    def _parse_hill(self, line: str) -> Kernel:
        if self.fields is None:
            raise ValueError(f" >>> Error: Hills file {self.filename} has no FIELDS header!")
        words = line.split()
        if len(words) < len(self.fields):
            raise ValueError(
                f" >>> Error: Incomplete record in hills file {self.filename}: `{line}`"
            )
        record = dict(zip(self.fields, words))
        self._check_periodicity()

        try:
            center = [float(record[name]) for name in self.names]
            flag = record["multivariate"]
            if flag == "true":
                multivariate = True
            elif flag == "false":
                multivariate = False
            else:
                raise ValueError(f" >>> Error: Cannot parse multivariate = {flag}")
            sigma = np.asarray(
                [float(record[f]) for f in sigma_field_names(self.names, multivariate)]
            )
            height = float(record["height"])
            float(record["biasf"])
        except KeyError as e:
            raise ValueError(
                f" >>> Error: Missing field {e.args[0]} in hills file {self.filename}!"
            ) from e

        if multivariate:
            sigma = band_to_precision(sigma, self.ncoords)
        return Kernel(center, sigma, height, multivariate)
