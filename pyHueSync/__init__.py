"""pyHueSync - state synchronisation for Philips Hue and deCONZ bridges."""

__version__ = "0.1.0"

from pyHueSync.enums import (  # noqa: F401 - re-export for convenience
    AdaptiveLightingState,
    ApiErrorType,
    BridgeType,
    ButtonEvent,
    Feature,
    FixupKind,
    ResourceKind,
    SwitchEvent,
    UpdateSource,
)

from pyHueSync.errors import (  # noqa: F401
    ApiError,
    CertificateError,
    CharacteristicMismatchError,
    ConfigurationError,
    HttpError,
    HueSyncError,
    LinkButtonNotPressedError,
    ProtocolError,
    TlvDecodeError,
    TransportError,
    UnsupportedBridgeError,
)

from pyHueSync.config import BridgeOptions  # noqa: F401

from pyHueSync.persistence import BridgeStore  # noqa: F401

from pyHueSync.adaptive_lighting import (  # noqa: F401
    AdaptiveLightingSession,
    CtTarget,
)

from pyHueSync.profiles import (  # noqa: F401
    DeviceProfile,
    DeviceProfileResolver,
    Fixup,
    ResourceConfig,
)

from pyHueSync.client import RemoteStateClient  # noqa: F401

from pyHueSync.notification import (  # noqa: F401
    NotificationStream,
    RawNotification,
    ResourceAdded,
    ResourceChanged,
    SceneRecalled,
    StreamClosed,
    StreamError,
    StreamListening,
)

from pyHueSync.event_stream import EventStreamClient  # noqa: F401

from pyHueSync.ws_monitor import WsMonitor  # noqa: F401

from pyHueSync.resource import Resource  # noqa: F401

from pyHueSync.write_buffer import PendingWrite, WriteBuffer  # noqa: F401

from pyHueSync.accessory import Accessory  # noqa: F401

from pyHueSync.capabilities import CapabilityRegistry  # noqa: F401

from pyHueSync.reconciler import (  # noqa: F401
    ReconcilerObserver,
    ResourceReconciler,
)

from pyHueSync.bridge import HueBridge  # noqa: F401

from pyHueSync.discovery import BridgeDiscovery  # noqa: F401
