from looptree.model.main import LooptreeModel, Result
