from lstm_transducer.model.metadata import (
    ModelDimensions,
    collect_dimensions,
    read_dimensions,
    read_int,
)
from lstm_transducer.model.session import ExecutionError, ModelHandle, load_model
from lstm_transducer.model.state import (
    RecurrentState,
    StateConsumedError,
    initial_state,
    stack_states,
    unstack_states,
)
from lstm_transducer.model.symbol_table import SymbolTable
from lstm_transducer.model.transducer import LstmTransducerModel

__all__ = [
    "ModelDimensions",
    "collect_dimensions",
    "read_dimensions",
    "read_int",
    "ExecutionError",
    "ModelHandle",
    "load_model",
    "RecurrentState",
    "StateConsumedError",
    "initial_state",
    "stack_states",
    "unstack_states",
    "SymbolTable",
    "LstmTransducerModel",
]
