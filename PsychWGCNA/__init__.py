from PsychWGCNA.countData import CountData
from PsychWGCNA.network import Network
from PsychWGCNA.linearModel import LinearModel
from PsychWGCNA.wgcna import WGCNA
from PsychWGCNA.utils import readWGCNA, getGeneList
