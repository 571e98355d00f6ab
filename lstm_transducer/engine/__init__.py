from lstm_transducer.engine.greedy import Hypothesis, greedy_search
from lstm_transducer.engine.stream import Stream, StreamFinishedError, StreamStatus
from lstm_transducer.engine.recognizer import RecognitionResult, Recognizer
from lstm_transducer.engine.engine import RecognizerEngine

__all__ = [
    "Hypothesis",
    "greedy_search",
    "Stream",
    "StreamFinishedError",
    "StreamStatus",
    "RecognitionResult",
    "Recognizer",
    "RecognizerEngine",
]
