class GadgetError(RuntimeError):
    """Base class for gadget lifecycle failures."""
    pass


class GadgetConfigError(GadgetError):
    """Raised when the gadget descriptor tree cannot be created."""
    pass


class ControllerNotFoundError(GadgetError):
    """Raised when no USB device controller is available."""
    pass


class BindError(GadgetError):
    """Raised when the gadget cannot be bound to a controller."""
    def __init__(self, message, controller=None):
        super().__init__(message)
        self.controller = controller
