import pytest

from cd48.types import PortFilter
from cd48.util import USB_VENDOR_ID
from cd48.util.check_hw import list_cd48_ports


@pytest.fixture(scope="session")
def cd48_ports():
    """Serial ports with a CD48 (by USB vendor id) plugged in."""
    return list_cd48_ports([PortFilter(usb_vendor_id=USB_VENDOR_ID)])


@pytest.fixture(autouse=True)
def requires_cd48(cd48_ports):
    """Skip every hardware test when no CD48 is attached."""
    if not cd48_ports:
        pytest.skip("No CD48 connected")
